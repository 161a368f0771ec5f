from __future__ import annotations

import hashlib
from typing import Mapping, Optional

FINGERPRINT_LENGTH = 32


def normalize(value: Optional[str]) -> str:
    if not value:
        return ""
    return value.strip()


def fingerprint(origin: str, client_signature: str, *, salt: str = "") -> str:
    combined = f"{salt}:{normalize(origin)}:{normalize(client_signature)}"
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def client_origin(headers: Mapping[str, str], peer: Optional[str]) -> str:
    forwarded = normalize(headers.get("x-forwarded-for"))
    if forwarded:
        first_hop = normalize(forwarded.split(",")[0])
        if first_hop:
            return first_hop
    real_ip = normalize(headers.get("x-real-ip"))
    if real_ip:
        return real_ip
    return normalize(peer) or "unknown"
