from __future__ import annotations

import hashlib
from pathlib import Path


def sha256_file(path: Path, chunk_size: int = 1024 * 1024) -> str:
    h = hashlib.sha256()
    with path.open("rb") as fh:
        for data in iter(lambda: fh.read(chunk_size), b""):
            h.update(data)
    return h.hexdigest()


def file_matches(path: Path, size: int, sha256: str | None = None) -> bool:
    """True when ``path`` exists with the declared size (and digest, if any)."""
    try:
        if path.stat().st_size != size:
            return False
    except FileNotFoundError:
        return False
    if sha256:
        return sha256_file(path).lower() == sha256.lower()
    return True
