from __future__ import annotations

import asyncio
import os
import tempfile
from pathlib import Path, PurePosixPath

from ...errors import ConnectionFailedError, NotFoundError
from ..codec import is_data_uri, parse_data_uri
from .interfaces import AssetPayload, AssetStoreProtocol


def _safe_relative(path: str) -> PurePosixPath:
    relative = PurePosixPath(path.strip().lstrip("/"))
    if not relative.parts or any(part in {"", ".", ".."} for part in relative.parts):
        raise ValueError(f"invalid asset path: {path!r}")
    return relative


class FilesystemAssetStore(AssetStoreProtocol):
    """Stores assets as files below ``root`` and hands out ``file://`` URLs."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _locate(self, path: str) -> Path:
        return self.root.joinpath(*_safe_relative(path).parts)

    def url_for(self, path: str) -> str:
        return self._locate(path).as_uri()

    # ------------------------------------------------------------------
    def _write(self, target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def upload(self, path: str, payload: AssetPayload) -> str:
        if isinstance(payload, str):
            if not is_data_uri(payload):
                raise ValueError("string payloads must be data URIs")
            payload = parse_data_uri(payload)[1]
        target = self._locate(path)
        try:
            await asyncio.to_thread(self._write, target, bytes(payload))
        except OSError as exc:
            raise ConnectionFailedError(f"Failed to upload asset {path}") from exc
        return target.as_uri()

    async def download(self, path: str) -> bytes:
        target = self._locate(path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except FileNotFoundError as exc:
            raise NotFoundError(f"Asset {path} does not exist.") from exc
        except OSError as exc:
            raise ConnectionFailedError(f"Failed to download asset {path}") from exc

    async def delete(self, path: str) -> None:
        target = self._locate(path)
        try:
            await asyncio.to_thread(target.unlink)
        except FileNotFoundError as exc:
            raise NotFoundError(f"Asset {path} does not exist.") from exc
        except OSError as exc:
            raise ConnectionFailedError(f"Failed to delete asset {path}") from exc

    def exists(self, path: str) -> bool:
        return self._locate(path).is_file()


__all__ = ["FilesystemAssetStore"]
