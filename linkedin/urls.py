from __future__ import annotations

import urllib.parse

from lipub.constants import DEFAULT_RETURN_URL

FEED_UPDATE_URL = "https://www.linkedin.com/feed/update/{urn}/"
POST_URN_PREFIXES = ("urn:li:share:", "urn:li:ugcPost:")


def safe_return_url(url: str | None, default: str = DEFAULT_RETURN_URL) -> str:
    """Accept only same-site relative paths as a post-sign-in destination."""
    if not url:
        return default
    url = url.strip()
    if not url.startswith("/") or url.startswith("//") or "\\" in url:
        return default
    if any(ord(char) < 0x20 for char in url):
        return default

    parsed = urllib.parse.urlsplit(url)
    if parsed.scheme or parsed.netloc:
        return default
    return url


def append_query_params(url: str, params: dict[str, str]) -> str:
    parsed = urllib.parse.urlparse(url)
    existing = urllib.parse.parse_qs(parsed.query, keep_blank_values=True)
    for key, value in params.items():
        existing[key] = [value]

    new_query = urllib.parse.urlencode(existing, doseq=True)
    return urllib.parse.urlunparse(parsed._replace(query=new_query))


def post_url(post_id: str) -> str:
    for prefix in POST_URN_PREFIXES:
        if prefix in post_id:
            numeric_id = post_id.rsplit(":", 1)[-1]
            return FEED_UPDATE_URL.format(urn=f"{prefix}{numeric_id}")
    return FEED_UPDATE_URL.format(urn=post_id)
