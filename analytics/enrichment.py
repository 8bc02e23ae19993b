"""
View Enrichment

Coarse user-agent classification, referrer reduction and country
resolution applied to a view before it is stored.
"""

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

from .models import Country

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientInfo:
    device_type: Optional[str] = None
    browser: Optional[str] = None
    os: Optional[str] = None


def parse_user_agent(user_agent: Optional[str]) -> ClientInfo:
    """
    Rough device / browser / OS classification.

    Returns an empty ClientInfo when no user agent was sent.
    """
    if not user_agent:
        return ClientInfo()
    ua = user_agent.lower()

    if "tablet" in ua or "ipad" in ua:
        device_type = "Tablet"
    elif "mobile" in ua or "iphone" in ua or "android" in ua:
        device_type = "Mobile"
    else:
        device_type = "Desktop"

    if "edg" in ua:
        browser = "Edge"
    elif "firefox" in ua:
        browser = "Firefox"
    elif "chrome" in ua or "crios" in ua:
        browser = "Chrome"
    elif "safari" in ua:
        browser = "Safari"
    else:
        browser = "Other"

    if "windows" in ua:
        os_name = "Windows"
    elif "iphone" in ua or "ipad" in ua or "ios" in ua:
        os_name = "iOS"
    elif "mac os x" in ua or "macintosh" in ua:
        os_name = "macOS"
    elif "android" in ua:
        os_name = "Android"
    elif "linux" in ua:
        os_name = "Linux"
    else:
        os_name = "Other"

    return ClientInfo(device_type=device_type, browser=browser, os=os_name)


def extract_domain(url: Optional[str]) -> Optional[str]:
    """Hostname of a referrer URL, or the raw value when it has none."""
    if not url:
        return url
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return url
    return hostname or url


def resolve_country(code: Optional[str]) -> Optional[Country]:
    """Map a 2-letter country code (e.g. from a CDN header) to a Country row."""
    if not code:
        return None
    code = code.strip().upper()
    # XX / T1 are what Cloudflare sends for unknown and Tor traffic
    if len(code) != 2 or not code.isalpha() or code == "XX":
        return None
    country, _ = Country.objects.get_or_create(code=code, defaults={"name": code})
    return country
