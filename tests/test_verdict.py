# File: tests/test_verdict.py
import pytest

from consentscan.models import Category, ComplianceStatus, ConsentState
from consentscan.verdict import NO_ACTION, resolve

PRE = ConsentState.PRE_CONSENT
REJ = ConsentState.POST_REJECTION
ACC = ConsentState.POST_ACCEPTANCE


def test_pre_consent_wins_over_post_rejection():
    status, remediation = resolve(Category.MARKETING, {PRE, REJ})
    assert status is ComplianceStatus.PRE_CONSENT_VIOLATION
    assert "marketing" in remediation
    assert "accepts" in remediation


def test_necessary_is_always_compliant():
    assert resolve(Category.NECESSARY, {PRE}) == (ComplianceStatus.COMPLIANT, NO_ACTION)
    assert resolve(Category.NECESSARY, {PRE, REJ, ACC})[0] is ComplianceStatus.COMPLIANT


def test_post_rejection_only():
    status, remediation = resolve(Category.ANALYTICS, {REJ, ACC})
    assert status is ComplianceStatus.POST_REJECTION_VIOLATION
    assert "reject" in remediation


def test_post_acceptance_only_is_compliant():
    assert resolve(Category.MARKETING, {ACC}) == (ComplianceStatus.COMPLIANT, NO_ACTION)


@pytest.mark.parametrize(
    "states,expected",
    [
        ({PRE}, ComplianceStatus.PRE_CONSENT_VIOLATION),
        ({REJ}, ComplianceStatus.POST_REJECTION_VIOLATION),
        ({ACC}, ComplianceStatus.COMPLIANT),
        (set(), ComplianceStatus.COMPLIANT),
    ],
)
def test_unknown_category_is_not_necessary(states, expected):
    assert resolve(Category.UNKNOWN, states)[0] is expected


def test_accepts_plain_values():
    status, _ = resolve("Analytics", ["pre-consent"])
    assert status is ComplianceStatus.PRE_CONSENT_VIOLATION


def test_remediation_is_category_specific():
    _, analytics = resolve(Category.ANALYTICS, {PRE})
    _, marketing = resolve(Category.MARKETING, {PRE})
    assert analytics != marketing


def test_resolution_is_deterministic():
    assert resolve(Category.FUNCTIONAL, {PRE, REJ}) == resolve(Category.FUNCTIONAL, [REJ, PRE])
