"""HTTP download helper used for the manifest and firmware binaries."""

from __future__ import annotations

import logging
from typing import Optional

import requests

logger = logging.getLogger(__name__)

USER_AGENT = "esp32-flasher/1.0"


class HttpDownloader:
    """Fetches URLs into memory with :mod:`requests`.

    Instances are callables taking a URL and returning the response body, so
    a plain function can stand in for one wherever a downloader is expected.
    """

    def __init__(self, timeout: Optional[float] = 60.0,
                 session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)

    def __call__(self, url: str) -> bytes:
        logger.debug(f"GET {url}")
        response = self.session.get(url, timeout=self.timeout, allow_redirects=True)
        response.raise_for_status()
        logger.debug(f"Downloaded {len(response.content)} bytes from {url}")
        return response.content

    def close(self) -> None:
        self.session.close()


__all__ = ["HttpDownloader"]
