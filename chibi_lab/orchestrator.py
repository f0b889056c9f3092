"""Generation workflows: gate, generate, meter, then persist.

Each action checks the token gate before the image backend is called. A
successful generation is metered exactly once, and only then is the result
offered to the library. Failures after the image exists are attached to the
outcome so the image is never lost.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import List, Optional

from . import audit as audit_sources
from .audit import UploadAuditLog
from .errors import ChibiLabError, GenerationFailedError, ValidationRejectedError
from .image.codec import ImagePayload, fetch_image_bytes, is_data_uri
from .image.gemini.interfaces import (
    CHARACTER_FROM_TEXT,
    CHIBI_FROM_IMAGE,
    EXPRESSION,
    GenerationBackendProtocol,
    GenerationRequest,
    ImageValidation,
)
from .library.models import BaseCharacter, Expression
from .library.store import LibraryStore
from .state import BASE_CHARACTER_IMAGE, BASE_CHARACTER_NAME, DEFAULT_BASE_NAME, LocalState
from .tokens.gate import TokenGate

logger = logging.getLogger(__name__)

EMOTION_PRESETS = ("Neutral", "Happy", "Sad", "Angry", "Surprise")
DEFAULT_TEXT_CHARACTER_NAME = "Generated Character"

EMPTY_EMOTION_MESSAGE = "Please enter a custom emotion or slide to a preset."
EMPTY_DESCRIPTION_MESSAGE = "Please describe the character you want to create."
EMPTY_EXPRESSION_MESSAGE = "Please enter a description for the expression."
NO_BASE_MESSAGE = "Create a base character before generating expressions."


@dataclass
class GenerationOutcome:
    """A generated (or accepted) image plus anything that went wrong afterwards."""

    image: str
    name: str
    expression: Optional[Expression] = None
    validation: Optional[ImageValidation] = None
    metering_error: Optional[ChibiLabError] = None
    persistence_error: Optional[ChibiLabError] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def saved(self) -> bool:
        return self.expression is not None and self.persistence_error is None


def name_from_filename(filename: str) -> str:
    stem = PurePath(filename or "").name.split(".")[0]
    return re.sub(r"[-_]", " ", stem) or DEFAULT_BASE_NAME


def name_from_description(description: str) -> str:
    return description[:30].strip() or DEFAULT_TEXT_CHARACTER_NAME


class GenerationOrchestrator:
    def __init__(
        self,
        backend: Optional[GenerationBackendProtocol],
        gate: TokenGate,
        state: LocalState,
        library: Optional[LibraryStore] = None,
        audit: Optional[UploadAuditLog] = None,
    ) -> None:
        self.backend = backend
        self.gate = gate
        self.state = state
        self.library = library
        self.audit = audit

    # ------------------------------------------------------------------
    # Actions
    async def create_base_from_image(
        self,
        image: ImagePayload,
        emotion: str = "Neutral",
        *,
        reference: Optional[ImagePayload] = None,
        similarity: int = 75,
        already_chibi: bool = False,
    ) -> GenerationOutcome:
        emotion = (emotion or "").strip()
        if not emotion:
            raise ValidationRejectedError(EMPTY_EMOTION_MESSAGE)
        self.gate.require_uses()
        await self._log_upload(image, audit_sources.UPLOAD_MAIN)
        await self._log_upload(reference, audit_sources.UPLOAD_REFERENCE)

        validation = await self._backend().validate_image(image)
        if not validation.is_solo:
            raise ValidationRejectedError(
                f"Upload failed: {validation.reason}. Please use an image with a single character."
            )
        if already_chibi:
            if not validation.is_chibi:
                raise ValidationRejectedError(
                    f"Upload failed: {validation.reason}. The image does not appear to be in Chibi "
                    "style. Please uncheck the box to let the AI convert it for you."
                )
            result = image
        else:
            request = GenerationRequest(
                CHIBI_FROM_IMAGE, emotion, base_image=image, reference_image=reference, similarity=similarity
            )
            result = await self._generate(request, audit_sources.CHIBI_GENERATION)

        outcome = GenerationOutcome(
            image=result.data_uri, name=name_from_filename(image.name), validation=validation
        )
        await self._meter(outcome)
        return outcome

    async def create_base_from_text(
        self,
        description: str,
        *,
        reference: Optional[ImagePayload] = None,
        similarity: int = 75,
    ) -> GenerationOutcome:
        if not (description or "").strip():
            raise ValidationRejectedError(EMPTY_DESCRIPTION_MESSAGE)
        self.gate.require_uses()
        await self._log_upload(reference, audit_sources.UPLOAD_REFERENCE)

        request = GenerationRequest(
            CHARACTER_FROM_TEXT, description, reference_image=reference, similarity=similarity
        )
        result = await self._generate(request, audit_sources.TEXT_TO_IMAGE_BASE)
        outcome = GenerationOutcome(image=result.data_uri, name=name_from_description(description))
        await self._meter(outcome)
        return outcome

    async def generate_expression(
        self,
        prompt: str,
        *,
        reference: Optional[ImagePayload] = None,
        similarity: int = 75,
        save: Optional[bool] = None,
    ) -> GenerationOutcome:
        if not (prompt or "").strip():
            raise ValidationRejectedError(EMPTY_EXPRESSION_MESSAGE)
        base = self.base_character()
        if base is None:
            raise ValidationRejectedError(NO_BASE_MESSAGE)
        self.gate.require_uses()
        await self._log_upload(reference, audit_sources.GENERATOR_REFERENCE)

        base_image = await self._base_payload(base)
        request = GenerationRequest(
            EXPRESSION, prompt, base_image=base_image, reference_image=reference, similarity=similarity
        )
        result = await self._generate(request, audit_sources.EXPRESSION_GENERATION)
        outcome = GenerationOutcome(image=result.data_uri, name=prompt.strip())
        await self._meter(outcome)

        should_save = self.state.save_by_default if save is None else save
        if should_save:
            await self._persist(outcome)
        return outcome

    # ------------------------------------------------------------------
    # Helpers
    def _backend(self) -> GenerationBackendProtocol:
        if self.backend is None:
            raise GenerationFailedError("No image generation backend is configured.")
        return self.backend

    def base_character(self) -> Optional[BaseCharacter]:
        image = self.state.get(BASE_CHARACTER_IMAGE)
        if not isinstance(image, str) or not image:
            return None
        name = self.state.get(BASE_CHARACTER_NAME) or DEFAULT_BASE_NAME
        return BaseCharacter(image=image, name=str(name))

    async def _base_payload(self, base: BaseCharacter) -> ImagePayload:
        if is_data_uri(base.image):
            try:
                return ImagePayload.from_data_uri(base.image, name=base.name)
            except ValueError as exc:
                raise ValidationRejectedError("The stored base character image is unreadable.") from exc
        data = await asyncio.to_thread(fetch_image_bytes, base.image)
        return ImagePayload(data=data, name=base.name)

    async def _generate(self, request: GenerationRequest, source: str) -> ImagePayload:
        try:
            data = await self._backend().generate(request)
        except ChibiLabError:
            raise
        except Exception as exc:
            logger.error("%s generation failed: %s", request.kind, exc)
            raise GenerationFailedError() from exc
        if not data:
            raise GenerationFailedError("Could not find image data in Gemini response.")
        result = ImagePayload(data=data)
        await self._log_upload(result, source)
        return result

    async def _meter(self, outcome: GenerationOutcome) -> None:
        error = await self.gate.record_use()
        if error is not None:
            outcome.metering_error = error
            outcome.warnings.append(error.message)

    async def _persist(self, outcome: GenerationOutcome) -> None:
        if self.library is None:
            return
        expression = Expression.create(outcome.name, outcome.image)
        try:
            outcome.expression = await self.library.add(expression)
        except ChibiLabError as exc:
            logger.error("could not save expression %s: %s", expression.id, exc)
            outcome.expression = expression
            outcome.persistence_error = exc
            outcome.warnings.append(exc.message)

    async def _log_upload(self, image: Optional[ImagePayload], source: str) -> None:
        if image is None or self.audit is None:
            return
        await self.audit.record(image, source)


__all__ = [
    "EMOTION_PRESETS",
    "GenerationOrchestrator",
    "GenerationOutcome",
    "name_from_description",
    "name_from_filename",
]
