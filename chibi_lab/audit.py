from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Optional

import piexif

from .db.repo.interfaces import SERVER_TIMESTAMP, RecordStoreProtocol
from .db.repo.paths import join_path
from .image.codec import ImagePayload, compress_image
from .image.store.interfaces import AssetStoreProtocol
from .tokens.meter import DEFAULT_NAMESPACE

logger = logging.getLogger(__name__)

UPLOAD_MAIN = "upload-screen-main"
UPLOAD_REFERENCE = "upload-screen-reference"
GENERATOR_REFERENCE = "generator-screen-reference"
TEXT_TO_IMAGE_BASE = "text-to-image-base"
CHIBI_GENERATION = "chibi-generation"
EXPRESSION_GENERATION = "expression-generation"


def _xp_utf16le(text: str) -> bytes:
    return (text + "\x00").encode("utf-16le")


def source_exif(source: str) -> bytes:
    exif = {"0th": {}, "Exif": {}, "GPS": {}, "1st": {}, "thumbnail": None}
    exif["0th"][piexif.ImageIFD.ImageDescription] = source.encode("utf-8", "ignore")
    exif["0th"][piexif.ImageIFD.XPComment] = _xp_utf16le(source)
    return piexif.dump(exif)


def push_id() -> str:
    return f"{int(time.time() * 1000):013d}-{uuid.uuid4().hex[:8]}"


@dataclass
class UploadAuditLog:
    """Keeps a compressed copy of every image that passes through the app.

    Logging never interrupts the caller: failures are written to the log and
    ``record`` returns ``None``.
    """

    records: RecordStoreProtocol
    assets: AssetStoreProtocol
    namespace: str = DEFAULT_NAMESPACE
    quality: int = 75

    async def record(self, image: ImagePayload, source: str) -> Optional[str]:
        try:
            data = await asyncio.to_thread(
                compress_image, image.data, quality=self.quality, exif=source_exif(source)
            )
            storage_path = f"all_uploads/{source}/{int(time.time() * 1000)}.jpg"
            url = await self.assets.upload(storage_path, data)
            entry_path = join_path(self.namespace, "all_uploads_log", push_id())
            await self.records.set(
                entry_path,
                {
                    "imageUrl": url,
                    "storagePath": storage_path,
                    "source": source,
                    "timestamp": SERVER_TIMESTAMP,
                },
            )
        except Exception as exc:
            logger.error("Failed to log image from source [%s]: %s", source, exc)
            return None
        logger.debug("logged %s image to %s", source, storage_path)
        return entry_path


__all__ = [
    "CHIBI_GENERATION",
    "EXPRESSION_GENERATION",
    "GENERATOR_REFERENCE",
    "TEXT_TO_IMAGE_BASE",
    "UPLOAD_MAIN",
    "UPLOAD_REFERENCE",
    "UploadAuditLog",
    "push_id",
    "source_exif",
]
