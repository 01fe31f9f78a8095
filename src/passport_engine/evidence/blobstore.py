"""Blob storage for uploaded evidence files."""

import asyncio
import hashlib
import mimetypes
from pathlib import Path
from typing import Protocol

_SCHEME = "blob://"


class BlobStore(Protocol):
    async def put(self, data: bytes, content_type: str) -> str: ...

    async def get(self, url: str) -> bytes: ...


class FileSystemBlobStore:
    """Content-addressed files under a root directory.

    URLs look like ``blob://<sha256><ext>``; storing the same bytes twice
    returns the same URL.
    """

    def __init__(self, root: str):
        self.root = Path(root)

    async def put(self, data: bytes, content_type: str) -> str:
        ext = mimetypes.guess_extension(content_type or "") or ".bin"
        name = f"{hashlib.sha256(data).hexdigest()}{ext}"
        await asyncio.to_thread(self._write, name, data)
        return f"{_SCHEME}{name}"

    async def get(self, url: str) -> bytes:
        if not url.startswith(_SCHEME):
            raise ValueError(f"Not a blob URL: {url}")
        name = url[len(_SCHEME):]
        if "/" in name or "\\" in name or name.startswith("."):
            raise ValueError(f"Invalid blob name: {name}")
        return await asyncio.to_thread((self.root / name).read_bytes)

    def _write(self, name: str, data: bytes) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self.root / name
        if not path.exists():
            path.write_bytes(data)
