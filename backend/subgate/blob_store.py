from __future__ import annotations

import base64
import binascii
from pathlib import Path
import re
from typing import Mapping, Optional, Protocol

_WHITESPACE_RE = re.compile(r"\s+")


class BlobStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...


class MemoryBlobStore:
    def __init__(self, blobs: Optional[Mapping[str, str]] = None) -> None:
        self._blobs: dict[str, str] = dict(blobs or {})

    def get(self, key: str) -> Optional[str]:
        return self._blobs.get(key)

    def put(self, key: str, value: str) -> None:
        self._blobs[key] = value


class FileBlobStore:
    """Key/value store with one text file per key under ``directory``."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def _path_for(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key in {".", ".."}:
            raise ValueError(f"Invalid blob key: {key!r}")
        return self.directory / key

    def get(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def put(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self._path_for(key).write_text(value, encoding="utf-8")


def decode_base64_text(value: str) -> str:
    """Decode standard or URL-safe Base64, with or without padding, to UTF-8 text."""
    cleaned = _WHITESPACE_RE.sub("", value)
    normalized = cleaned.replace("-", "+").replace("_", "/")
    padded = normalized + "=" * (-len(normalized) % 4)
    try:
        raw = base64.b64decode(padded, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"Stored configuration is not valid Base64: {exc}") from exc
    return raw.decode("utf-8")


def encode_base64_text(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")
