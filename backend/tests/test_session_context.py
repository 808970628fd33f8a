import pytest

from personaflow.services.session_context import (
    build_tracker_context,
    classify_device_type,
    classify_referral_source,
)


@pytest.mark.parametrize("referer, expected", [
    (None, "direct"),
    ("", "direct"),
    ("https://blog.example.com/post/1", "internal"),
    ("https://www.google.com/search?q=x", "organic"),
    ("https://duckduckgo.com/", "organic"),
    ("https://mail.google.com/mail/u/0", "email"),
    ("https://outlook.live.com/", "email"),
    ("https://t.co/abc", "social"),
    ("https://www.reddit.com/r/python", "social"),
    ("https://www.microsoft.com/", "referral"),
    ("https://news.ycombinator.com/", "referral"),
])
def test_classify_referral_source(referer, expected):
    assert classify_referral_source(referer, "blog.example.com") == expected


def test_internal_requires_site_host():
    assert classify_referral_source("https://blog.example.com/", None) == "referral"


@pytest.mark.parametrize("user_agent, expected", [
    (None, "desktop"),
    ("Mozilla/5.0 (iPad; CPU OS 17_0 like Mac OS X)", "tablet"),
    ("Mozilla/5.0 (Linux; Android 14; SM-X710) AppleWebKit/537.36 Safari/537.36", "tablet"),
    ("Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 Mobile Safari/537.36", "mobile"),
    ("Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) Mobile/15E148", "mobile"),
    ("Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120.0", "desktop"),
])
def test_classify_device_type(user_agent, expected):
    assert classify_device_type(user_agent) == expected


def test_tracker_context_defaults(settings):
    context = build_tracker_context(
        settings,
        referer="https://www.bing.com/",
        user_agent="Mozilla/5.0 (iPhone) Mobile",
        is_returning=True,
    )

    assert context["negative"] == {
        "enabled": True,
        "bounceThreshold": 15,
        "pogoStickThreshold": 10,
        "fastScrollVelocity": 5000,
    }
    assert context["session"]["referralSource"] == "organic"
    assert context["session"]["deviceType"] == "mobile"
    assert context["session"]["idleTimeout"] == 60
    assert context["session"]["isFirstVisit"] is False
    assert "[data-share]" in context["social"]["shareSelectors"]


def test_tracker_context_respects_toggles(settings):
    settings.ENABLE_SESSION_CONTEXT = False
    settings.ENABLE_SOCIAL_SIGNALS = False
    settings.ENABLE_NEGATIVE_SIGNALS = False

    context = build_tracker_context(settings)
    assert set(context) == {"negative"}
    assert context["negative"]["enabled"] is False
