"""Device and traffic-source classification"""
import pytest

from app.utils.visitor import classify_device, classify_traffic_source


@pytest.mark.parametrize("user_agent, expected", [
    ("Mozilla/5.0 (iPad; CPU OS 17_0 like Mac OS X)", "tablet"),
    ("Mozilla/5.0 (Linux; Android 14; SM-X710) AppleWebKit/537.36 Safari/537.36", "tablet"),
    ("Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 Mobile Safari/537.36", "mobile"),
    ("Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) Mobile/15E148", "mobile"),
    ("Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/126.0", "desktop"),
    (None, "desktop"),
    ("", "desktop"),
])
def test_classify_device(user_agent, expected):
    assert classify_device(user_agent) == expected


@pytest.mark.parametrize("utm_source, utm_medium, referrer, expected", [
    ("google", "cpc", None, "paid"),
    ("facebook", "paid_social", "https://facebook.com", "paid"),
    ("newsletter", None, None, "email"),
    (None, "email", "https://mail.google.com", "email"),
    ("instagram", None, None, "social"),
    (None, "organic", None, "organic"),
    (None, None, "https://www.google.com/search?q=funnels", "organic"),
    (None, None, "https://m.facebook.com/story", "social"),
    (None, None, "https://t.co/abc", "social"),
    (None, None, "https://x.com/someone", "social"),
    (None, None, "https://www.netflix.com/browse", "referral"),
    (None, None, "partner-blog.io/review", "referral"),
    ("bing", None, None, "organic"),
    ("partner-site", None, None, "referral"),
    (None, None, None, "direct"),
    ("", "", "", "direct"),
])
def test_classify_traffic_source(utm_source, utm_medium, referrer, expected):
    assert classify_traffic_source(utm_source, utm_medium, referrer) == expected
