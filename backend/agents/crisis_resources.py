"""Crisis resource footers appended to generated replies.

Footers are keyed by severity band:

- severity >= 4: crisis hotline resources
- severity == 3: suggest talking to a counselor or therapist
- severity == 2: gentle safety check-in
- severity <= 1: nothing
"""

from constants import CrisisSeverity

CRISIS_RESOURCES = """

---

If you're in crisis, please know you're not alone:
- 988 Suicide & Crisis Lifeline: call or text 988 (US)
- Crisis Text Line: Text HOME to 741741
- International Association for Suicide Prevention: https://www.iasp.info/resources/Crisis_Centres/

I'm here with you, and these resources are too."""

SUGGEST_HUMAN_FOOTER = """

What you're experiencing sounds significant. While I'm here to listen, a \
counselor or therapist can offer the kind of ongoing support that might be \
really valuable right now. Would you like to talk about what finding that kind \
of support might look like?"""

SAFETY_CHECK_FOOTER = """

I want to make sure I'm being helpful. If you're going through something \
difficult, talking to someone who can really support you (a counselor, \
therapist, or trusted friend) can make a real difference."""


def footer_for_severity(severity: int) -> str:
    """Return the footer for a severity, or an empty string."""
    if severity >= CrisisSeverity.CRISIS_SUPPORT:
        return CRISIS_RESOURCES
    if severity == CrisisSeverity.SUGGEST_HUMAN:
        return SUGGEST_HUMAN_FOOTER
    if severity == CrisisSeverity.PROCEED_WITH_CARE:
        return SAFETY_CHECK_FOOTER
    return ""


def apply_severity_modifier(response: str, severity: int | None) -> str:
    """Append the severity-band footer to a generated reply.

    Args:
        response: Reply text from the model
        severity: Crisis severity 1-5; None is treated as 1

    Returns:
        The reply with at most one footer appended
    """
    return response + footer_for_severity(severity or CrisisSeverity.PROCEED)
