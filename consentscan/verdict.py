"""
Verdict resolution. Pure and deterministic: the same (category, states)
always yields the same status and remediation text.

Rules, first match wins:
  1. Necessary                      -> Compliant
  2. seen before any consent        -> Pre-Consent Violation
  3. seen after consent was refused -> Post-Rejection Violation
  4. otherwise                      -> Compliant
An item seen in both non-consented states is reported as a Pre-Consent
Violation only.
"""

from typing import Iterable, Tuple

from consentscan.models import Category, ComplianceStatus, ConsentState

NO_ACTION = "No action needed."

_KIND_OF = {
    Category.ANALYTICS: "analytics technology",
    Category.MARKETING: "marketing technology",
    Category.FUNCTIONAL: "functional technology",
    Category.UNKNOWN: "unclassified technology",
}

PRE_CONSENT_REMEDIATION = (
    "This {kind} must be blocked from loading until after the user explicitly accepts "
    "the cookie policy. Configure your Consent Management Platform (CMP) or use script "
    "management tools to load it only once consent has been given."
)

POST_REJECTION_REMEDIATION = (
    "Your website must respect the user's decision to reject tracking. This {kind} must "
    "not load or fire after consent is rejected; make sure your consent management logic "
    "recognises it and keeps it blocked when consent is not granted."
)


def _kind(category: Category) -> str:
    return _KIND_OF.get(category, "technology")


def resolve(category: Category, states_observed: Iterable[ConsentState]) -> Tuple[ComplianceStatus, str]:
    category = Category(category)
    states = {ConsentState(s) for s in states_observed}

    if category is Category.NECESSARY:
        return ComplianceStatus.COMPLIANT, NO_ACTION
    if ConsentState.PRE_CONSENT in states:
        return ComplianceStatus.PRE_CONSENT_VIOLATION, PRE_CONSENT_REMEDIATION.format(kind=_kind(category))
    if ConsentState.POST_REJECTION in states:
        return ComplianceStatus.POST_REJECTION_VIOLATION, POST_REJECTION_REMEDIATION.format(kind=_kind(category))
    return ComplianceStatus.COMPLIANT, NO_ACTION
