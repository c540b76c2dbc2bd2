from __future__ import annotations

import re
from dataclasses import dataclass, field

PERSON_URN_PREFIX = "urn:li:person:"
PERSON_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
PERSON_URN_RE = re.compile(r"^urn:li:person:[A-Za-z0-9_-]+$")


def is_valid_person_urn(value: str | None) -> bool:
    return bool(value and PERSON_URN_RE.fullmatch(value))


def person_urn(person_id: object) -> str | None:
    """Build ``urn:li:person:<id>``, or None when the id is not well formed."""
    if not isinstance(person_id, str) or not PERSON_ID_RE.fullmatch(person_id):
        return None
    return f"{PERSON_URN_PREFIX}{person_id}"


@dataclass
class HandshakeState:
    state: str
    nonce: str
    return_url: str


@dataclass
class Identity:
    person_urn: str
    display_name: str | None = None


@dataclass
class Session:
    access_token: str | None = field(default=None, repr=False)
    person_urn: str | None = None
    display_name: str | None = None

    def is_valid(self) -> bool:
        return bool(self.access_token) and is_valid_person_urn(self.person_urn)


@dataclass
class UploadSession:
    upload_url: str = field(repr=False)
    asset_urn: str


@dataclass
class PostRequest:
    author_urn: str
    caption: str
    asset_urn: str
    visibility: str = "PUBLIC"


@dataclass
class PostResult:
    post_id: str
    post_url: str
