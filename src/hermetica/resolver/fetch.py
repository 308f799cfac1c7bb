"""Package fetchers — the only network-facing part of a build."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from urllib.parse import unquote, urlparse

import requests

from hermetica.core.errors import FetchError


class Fetcher(ABC):
    """Download one package archive and return its bytes."""

    @abstractmethod
    def fetch(self, url: str) -> bytes:
        ...


class HttpFetcher(Fetcher):
    """Fetch over HTTP(S) with requests; ``file://`` URLs and plain paths are read locally."""

    def __init__(self, timeout: float = 60.0, session: requests.Session | None = None) -> None:
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", "hermetica-fetch")

    def fetch(self, url: str) -> bytes:
        parsed = urlparse(url)
        if parsed.scheme == "file":
            return self._read_local(Path(unquote(parsed.path)), url)
        if not parsed.scheme:
            return self._read_local(Path(url), url)
        try:
            resp = self.session.get(url, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise FetchError(f"Failed to fetch {url}: {exc}", context={"url": url}) from exc
        return resp.content

    @staticmethod
    def _read_local(path: Path, url: str) -> bytes:
        try:
            return path.read_bytes()
        except OSError as exc:
            raise FetchError(f"Failed to read {url}: {exc}", context={"url": url}) from exc
