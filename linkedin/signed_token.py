"""Tamper-evident cookie values.

A value is wrapped in a compact JSON envelope naming the cookie it was issued
for and when, then MACed with HMAC-SHA256. Both parts are base64url without
padding, joined by a dot, so the result is a valid cookie value as is.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json


class BadSignature(RuntimeError):
    pass


class Expired(BadSignature):
    pass


def derive_key(secret: str) -> bytes:
    return hashlib.sha256(f"lipub:{secret}".encode()).digest()


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _b64decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def sign(name: str, value: str, key: bytes, *, issued_at: int) -> str:
    envelope = json.dumps({"n": name, "v": value, "iat": issued_at}, separators=(",", ":"))
    data = envelope.encode()
    mac = hmac.new(key, data, hashlib.sha256).digest()
    return f"{_b64encode(data)}.{_b64encode(mac)}"


def unsign(token: str, name: str, key: bytes, *, max_age: int, now: float) -> str:
    """Return the value signed for cookie ``name``.

    Raises BadSignature when the token is malformed, forged or was issued for
    another cookie, and Expired once it is older than ``max_age`` seconds.
    """
    data_b64, sep, mac_b64 = token.partition(".")
    if not sep:
        raise BadSignature("Signed value has no MAC.")
    try:
        data = _b64decode(data_b64)
        mac = _b64decode(mac_b64)
    except ValueError as error:
        raise BadSignature("Signed value is not base64url.") from error

    expected = hmac.new(key, data, hashlib.sha256).digest()
    if not hmac.compare_digest(expected, mac):
        raise BadSignature("MAC mismatch.")

    try:
        envelope = json.loads(data)
    except ValueError as error:
        raise BadSignature("Envelope is not JSON.") from error
    if not isinstance(envelope, dict) or envelope.get("n") != name:
        raise BadSignature(f"Value was not issued for {name!r}.")

    issued_at = envelope.get("iat")
    if not isinstance(issued_at, int) or issued_at + max_age < now:
        raise Expired(f"Value for {name!r} expired.")
    value = envelope.get("v")
    if not isinstance(value, str):
        raise BadSignature("Envelope carries no string value.")
    return value
