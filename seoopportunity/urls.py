"""
URL and domain helpers.
"""

import re
from urllib.parse import urlparse

_SCHEME_WWW = re.compile(r"^(https?://)?(www\.)?", re.IGNORECASE)


def domain_from_url(url: str) -> str:
    """
    Extract the bare host from a URL ("https://www.acme.com/x" -> "acme.com").

    Strings without a scheme are parsed as if they had one; anything that does
    not yield a host is returned unchanged.
    """
    if not url:
        return ""
    candidate = url.strip()
    if "://" not in candidate:
        candidate = "https://" + candidate

    try:
        host = urlparse(candidate).hostname or ""
    except ValueError:
        return url
    if not host:
        return url
    return re.sub(r"^www\.", "", host)


def normalize_domain(value: str) -> str:
    """Lowercase, strip scheme/www and trailing slash, for equality checks."""
    return _SCHEME_WWW.sub("", value.strip().lower()).rstrip("/")


def normalize_url(url: str) -> str:
    """Strip a trailing slash."""
    return url.strip().rstrip("/")


def business_name_from_domain(domain: str) -> str:
    """First label of a domain ("joesroofing.com" -> "joesroofing")."""
    return domain.split(".")[0] if domain else ""
