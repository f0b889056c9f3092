from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from ..codec import ImagePayload

CHARACTER_FROM_TEXT = "character_from_text"
CHIBI_FROM_IMAGE = "chibi_from_image"
EXPRESSION = "expression"

GENERATION_KINDS = (CHARACTER_FROM_TEXT, CHIBI_FROM_IMAGE, EXPRESSION)


@dataclass(frozen=True)
class GenerationRequest:
    kind: str
    prompt: str
    base_image: ImagePayload | None = None
    reference_image: ImagePayload | None = None
    similarity: int = 75

    def __post_init__(self) -> None:
        if self.kind not in GENERATION_KINDS:
            raise ValueError(f"unknown generation kind: {self.kind!r}")
        if self.kind != CHARACTER_FROM_TEXT and self.base_image is None:
            raise ValueError(f"{self.kind} requests need a base image")
        object.__setattr__(self, "similarity", max(0, min(100, int(self.similarity))))


@dataclass(frozen=True)
class ImageValidation:
    is_chibi: bool
    is_solo: bool
    reason: str


class GenerationBackendProtocol(Protocol):
    async def generate(self, request: GenerationRequest) -> bytes:
        """Return raw image bytes or raise ``GenerationFailedError``."""

    async def validate_image(self, image: ImagePayload) -> ImageValidation:
        ...
