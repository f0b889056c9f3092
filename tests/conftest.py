from __future__ import annotations

import io
import sys
from pathlib import Path
from typing import List

import pytest
from PIL import Image

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from chibi_lab.db.repo.sqlite import SQLiteRecordStore
from chibi_lab.errors import GenerationFailedError
from chibi_lab.image.codec import ImagePayload
from chibi_lab.image.gemini.interfaces import GenerationRequest, ImageValidation
from chibi_lab.image.store.filesystem import FilesystemAssetStore
from chibi_lab.state import LocalState

NAMESPACE = "ExpressionCreator"


def png_bytes(color: tuple[int, int, int] = (200, 120, 255), size: int = 8) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (size, size), color).save(buffer, format="PNG")
    return buffer.getvalue()


class StubBackend:
    """Records every call; returns a small PNG or raises when told to fail."""

    def __init__(
        self,
        *,
        fail: bool = False,
        is_chibi: bool = True,
        is_solo: bool = True,
        image: bytes | None = None,
    ) -> None:
        self.fail = fail
        self.validation = ImageValidation(is_chibi=is_chibi, is_solo=is_solo, reason="stub verdict")
        self.image = image if image is not None else png_bytes((10, 200, 30))
        self.requests: List[GenerationRequest] = []
        self.validated: List[ImagePayload] = []

    async def generate(self, request: GenerationRequest) -> bytes:
        self.requests.append(request)
        if self.fail:
            raise GenerationFailedError()
        return self.image

    async def validate_image(self, image: ImagePayload) -> ImageValidation:
        self.validated.append(image)
        return self.validation


@pytest.fixture()
def records(tmp_path: Path) -> SQLiteRecordStore:
    return SQLiteRecordStore(tmp_path / "records.sqlite", poll_interval=0.05)


@pytest.fixture()
def assets(tmp_path: Path) -> FilesystemAssetStore:
    return FilesystemAssetStore(tmp_path / "assets")


@pytest.fixture()
def state(tmp_path: Path) -> LocalState:
    return LocalState(tmp_path / "state.json")


@pytest.fixture()
def png() -> bytes:
    return png_bytes()
