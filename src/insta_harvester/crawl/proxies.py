"""Proxy selection with per-session affinity."""

from __future__ import annotations

import zlib
from typing import Dict, Optional, Sequence
from urllib.parse import urlparse, urlunparse


class ProxyRotation:
    """Maps a session id to the same proxy every time it asks."""

    def __init__(self, proxy_urls: Sequence[str] = ()) -> None:
        self.proxy_urls = [url for url in proxy_urls if url]

    def __bool__(self) -> bool:
        return bool(self.proxy_urls)

    def new_url(self, session_id: Optional[str] = None) -> Optional[str]:
        if not self.proxy_urls:
            return None
        if session_id is None:
            return self.proxy_urls[0]
        index = zlib.crc32(session_id.encode("utf-8")) % len(self.proxy_urls)
        return self.proxy_urls[index]

    def playwright_proxy(self, session_id: Optional[str] = None) -> Optional[Dict[str, str]]:
        """Proxy settings in the shape ``Browser.new_context(proxy=...)`` expects."""

        url = self.new_url(session_id)
        if not url:
            return None

        parsed = urlparse(url)
        host = parsed.hostname or ""
        server = urlunparse((parsed.scheme or "http", f"{host}:{parsed.port}" if parsed.port else host, "", "", "", ""))
        proxy = {"server": server}
        if parsed.username:
            proxy["username"] = parsed.username
        if parsed.password:
            proxy["password"] = parsed.password
        return proxy

    def requests_proxies(self, session_id: Optional[str] = None) -> Dict[str, str]:
        url = self.new_url(session_id)
        if not url:
            return {}
        return {"http": url, "https": url}
