# File: tests/test_consent.py
import pytest

from consentscan.consent import attempt_consent_action, get_consent_keywords

from conftest import FakeFrame, FakePage, FakeSite


def test_keyword_lists_keep_their_order():
    kw = get_consent_keywords()
    assert kw["accept"][0] == "accept all"
    assert kw["accept"][-1] == "continue"
    assert kw["reject"][0] == "reject all"
    assert kw["reject"][-1] == "necessary only"


@pytest.mark.asyncio()
async def test_reject_matches_decline_all():
    site = FakeSite(pages={"https://example.com/": {"buttons": ["Accept all", "  Decline All  "]}})
    page = FakePage(site)
    await page.goto("https://example.com/")
    assert await attempt_consent_action(page, "reject", settle_ms=0) is True
    assert page.main_frame.clicked == ["  Decline All  "]
    assert site.consent == "rejected"


@pytest.mark.asyncio()
async def test_keyword_major_search_prefers_earlier_keyword_in_child_frame():
    site = FakeSite(pages={"https://example.com/": {"buttons": ["OK"]}})
    cmp_frame = FakeFrame(site, buttons=["Accept All Cookies"], url="https://cmp.example.net/")
    page = FakePage(site, child_frames=[cmp_frame])
    await page.goto("https://example.com/")
    assert await attempt_consent_action(page, "accept", settle_ms=0) is True
    assert cmp_frame.clicked == ["Accept All Cookies"]
    assert page.main_frame.clicked == []


@pytest.mark.asyncio()
async def test_detached_frame_is_swallowed():
    site = FakeSite(pages={"https://example.com/": {"buttons": []}})
    gone = FakeFrame(site, buttons=["Reject all"], detached=True)
    page = FakePage(site, child_frames=[gone])
    await page.goto("https://example.com/")
    assert await attempt_consent_action(page, "reject", settle_ms=0) is False
    assert gone.evaluated == 0


@pytest.mark.asyncio()
async def test_erroring_frame_is_skipped_and_search_continues():
    site = FakeSite(pages={"https://example.com/": {"buttons": []}})
    broken = FakeFrame(site, buttons=["Reject all"], error=RuntimeError("boom"))
    good = FakeFrame(site, buttons=["Necessary only"])
    page = FakePage(site, child_frames=[broken, good])
    await page.goto("https://example.com/")
    assert await attempt_consent_action(page, "reject", settle_ms=0) is True
    assert broken.evaluated == 1
    assert good.clicked == ["Necessary only"]


@pytest.mark.asyncio()
async def test_no_match_returns_false():
    site = FakeSite(pages={"https://example.com/": {"buttons": ["Subscribe", "Read more"]}})
    page = FakePage(site)
    await page.goto("https://example.com/")
    assert await attempt_consent_action(page, "reject", settle_ms=0) is False


@pytest.mark.asyncio()
async def test_never_raises():
    site = FakeSite()
    page = FakePage(site)
    page.main_frame.error = RuntimeError("Execution context was destroyed")
    assert await attempt_consent_action(page, "accept", settle_ms=0) is False
    assert await attempt_consent_action(page, "bogus") is False
