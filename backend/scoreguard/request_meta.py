import hashlib
from typing import Optional

from flask import request


def get_client_ip() -> Optional[str]:
    """Peer address of the request.

    Forwarding headers are never read here; behind a proxy, ProxyFix
    (``TRUSTED_PROXY_HOPS``) has already rewritten ``remote_addr``.
    """
    return request.remote_addr or None


def get_device_hash() -> Optional[str]:
    """Coarse device fingerprint: sha256 of user agent, language and platform hints."""
    ua = request.headers.get('User-Agent', '')
    language = request.headers.get('Accept-Language', '')
    platform = (
        request.headers.get('Sec-CH-UA-Platform')
        or request.headers.get('X-Client-Platform')
        or ''
    )
    if not ua and not language and not platform:
        return None
    raw = f"{ua}|{language}|{platform}".lower()
    return hashlib.sha256(raw.encode('utf-8')).hexdigest()
