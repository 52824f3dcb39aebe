from __future__ import annotations

import hashlib

from fastapi import Request

from ..config import get_settings
from ..schemas.session import BindingInfo


def client_ip(request: Request) -> str | None:
    """Socket peer, or the address it forwarded for when the peer is a trusted proxy."""
    peer = request.client.host if request.client else None
    if peer is None or peer not in get_settings().trusted_proxies:
        return peer

    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return peer


def binding_info(request: Request) -> BindingInfo:
    return BindingInfo(
        client_ip=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


def hash_ip(ip: str) -> str:
    return hashlib.sha256(ip.encode("utf-8")).hexdigest()
