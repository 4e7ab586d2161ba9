"""
Visitor classification from raw request metadata.

User agents, referrers and UTM values arrive as opaque strings from the
tracking snippet. These helpers bucket them into the small vocabularies used
by sessions and analytics breakdowns:

- device: desktop, mobile, tablet
- traffic source: direct, organic, social, email, paid, referral
"""
from typing import Optional
from urllib.parse import urlparse

DEVICES = ("desktop", "mobile", "tablet")
TRAFFIC_SOURCES = ("direct", "organic", "social", "email", "paid", "referral")

_TABLET_MARKERS = ("ipad", "tablet", "kindle", "silk", "playbook")
_MOBILE_MARKERS = ("mobi", "iphone", "ipod", "android", "blackberry", "opera mini", "windows phone")

_PAID_MEDIUMS = {"cpc", "ppc", "paid", "paidsearch", "paid_search", "paidsocial", "paid_social", "display", "cpm", "ads"}
_EMAIL_MARKERS = ("email", "e-mail", "newsletter", "mailchimp", "brevo")
_SOCIAL_DOMAINS = ("t.co", "x.com", "fb.com", "fb.me", "lnkd.in", "youtu.be", "threads.net")
_SOCIAL_NAMES = ("facebook", "instagram", "twitter", "linkedin", "pinterest", "reddit", "tiktok", "youtube", "snapchat", "threads")
_SEARCH_NAMES = ("google", "bing", "yahoo", "duckduckgo", "baidu", "yandex", "ecosia")
_SEARCH_DOMAINS = ("search.brave.com",)


def classify_device(user_agent: Optional[str]) -> str:
    """Bucket a User-Agent string; anything unrecognised is desktop"""
    ua = (user_agent or "").lower()
    if any(marker in ua for marker in _TABLET_MARKERS):
        return "tablet"
    # Android tablets omit "mobile" from their UA
    if "android" in ua and "mobile" not in ua:
        return "tablet"
    if any(marker in ua for marker in _MOBILE_MARKERS):
        return "mobile"
    return "desktop"


def _host(referrer: Optional[str]) -> str:
    if not referrer:
        return ""
    parsed = urlparse(referrer if "//" in referrer else f"//{referrer}")
    return (parsed.netloc or "").lower()


def _matches_name(value: str, names) -> bool:
    return any(n in value for n in names)


def _host_matches(host: str, names, domains) -> bool:
    """Host is one of `domains` (or a subdomain of one), or has a label in `names`"""
    if any(host == d or host.endswith("." + d) for d in domains):
        return True
    labels = host.split(".")
    return any(n in labels for n in names)


def classify_traffic_source(
    utm_source: Optional[str] = None,
    utm_medium: Optional[str] = None,
    referrer: Optional[str] = None,
) -> str:
    """
    Derive the traffic source.

    UTM tags take precedence over the referrer: paid mediums first, then
    email, then social. Without tags the referrer host decides between
    social, organic search and plain referral. No tags and no referrer is
    direct traffic.
    """
    source = (utm_source or "").strip().lower()
    medium = (utm_medium or "").strip().lower()

    if medium in _PAID_MEDIUMS:
        return "paid"
    if any(m in medium for m in _EMAIL_MARKERS) or any(m in source for m in _EMAIL_MARKERS):
        return "email"
    if medium in ("social", "social-network", "social_media") or _matches_name(source, _SOCIAL_NAMES):
        return "social"
    if medium == "organic":
        return "organic"

    host = _host(referrer)
    if host:
        if _host_matches(host, _SOCIAL_NAMES, _SOCIAL_DOMAINS):
            return "social"
        if _host_matches(host, _SEARCH_NAMES, _SEARCH_DOMAINS):
            return "organic"
        return "referral"

    if source:
        if _matches_name(source, _SEARCH_NAMES):
            return "organic"
        return "referral"
    return "direct"
