# File: tests/test_domain_utils.py
import warnings

import pytest

from consentscan.domain_utils import host_from_url, registrable_domain, same_site


@pytest.mark.parametrize(
    "value, expected",
    [
        ("https://www.example.co.uk/page", "example.co.uk"),
        ("static.example.com", "example.com"),
        (".example.com", "example.com"),
        ("about:blank", ""),
        ("localhost", "localhost"),
    ],
)
def test_registrable_domain(value, expected):
    assert registrable_domain(value) == expected


def test_registrable_domain_emits_no_deprecation_warning():
    with warnings.catch_warnings():
        warnings.simplefilter("error", DeprecationWarning)
        assert registrable_domain("https://shop.example.com/") == "example.com"


def test_same_site_and_host():
    assert host_from_url("https://WWW.Example.com./x") == "www.example.com"
    assert same_site("https://shop.example.com/a", "https://example.com/")
    assert not same_site("https://example.org/", "https://example.com/")
    assert not same_site("https://example.com/", "about:blank")
