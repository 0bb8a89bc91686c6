from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator
from urllib.parse import unquote, urlsplit, urlunsplit
from urllib.request import url2pathname

import requests
import urllib3
from requests.adapters import HTTPAdapter
from requests.auth import HTTPBasicAuth
from urllib3.util.retry import Retry

from bootshell.common.config import RuntimeConfig
from bootshell.common.errors import NetworkError


log = logging.getLogger(__name__)


def is_local_location(location: str) -> bool:
    scheme = urlsplit(location).scheme.lower()
    # A one-letter scheme is a Windows drive ("C:\\apps\\demo").
    return scheme in ("", "file") or len(scheme) == 1


def local_path(location: str) -> Path:
    parts = urlsplit(location)
    if parts.scheme.lower() != "file":
        return Path(location)
    if parts.netloc and parts.netloc.lower() != "localhost":
        return Path(url2pathname(f"//{parts.netloc}{parts.path}"))
    return Path(url2pathname(parts.path))


def split_credentials(url: str) -> tuple[str, HTTPBasicAuth | None]:
    parts = urlsplit(url)
    if parts.username is None:
        return url, None
    netloc = parts.hostname or ""
    if parts.port is not None:
        netloc = f"{netloc}:{parts.port}"
    auth = HTTPBasicAuth(unquote(parts.username), unquote(parts.password or ""))
    return urlunsplit(parts._replace(netloc=netloc)), auth


def redact_credentials(location: str) -> str:
    parts = urlsplit(location)
    if parts.password is None:
        return location
    netloc = parts.netloc.replace(f":{parts.password}@", ":***@", 1)
    return urlunsplit(parts._replace(netloc=netloc))


class Transport:
    """Reads manifests and artifacts from a filesystem path or an HTTP(S) URL."""

    def __init__(self, runtime: RuntimeConfig, verify_tls: bool = True):
        self.runtime = runtime
        self.session = requests.Session()
        retry = Retry(
            total=runtime.max_retries,
            connect=runtime.max_retries,
            read=runtime.max_retries,
            status=runtime.max_retries,
            backoff_factor=0.5,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=frozenset({"GET", "HEAD"}),
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)
        if not verify_tls:
            log.warning("TLS certificate and hostname verification disabled (--ignoressl).")
            self.session.verify = False
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    @staticmethod
    def _guarded(chunks: Iterator[bytes], location: str) -> Iterator[bytes]:
        try:
            for chunk in chunks:
                if chunk:
                    yield chunk
        except requests.RequestException as exc:
            raise NetworkError(f"Transfer from {location} failed: {exc}", location=location) from exc
        except OSError as exc:
            raise NetworkError(f"Reading {location} failed: {exc}", location=location) from exc

    @contextmanager
    def open_stream(self, location: str) -> Iterator[Iterator[bytes]]:
        chunk_size = self.runtime.download_chunk_size
        if is_local_location(location):
            path = local_path(location)
            try:
                fh = path.open("rb")
            except OSError as exc:
                raise NetworkError(f"Cannot open {path}: {exc}", location=location) from exc
            with fh:
                yield self._guarded(iter(lambda: fh.read(chunk_size), b""), location)
            return

        url, auth = split_credentials(location)
        resp = None
        try:
            resp = self.session.get(
                url,
                stream=True,
                auth=auth,
                timeout=(self.runtime.connect_timeout_seconds, self.runtime.read_timeout_seconds),
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            if resp is not None:
                resp.close()
            raise NetworkError(f"GET {url} failed: {exc}", location=url) from exc
        with resp:
            yield self._guarded(resp.iter_content(chunk_size=chunk_size), url)

    def read_bytes(self, location: str) -> bytes:
        with self.open_stream(location) as chunks:
            return b"".join(chunks)

    def close(self) -> None:
        self.session.close()
