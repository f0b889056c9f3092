from __future__ import annotations

import base64
import binascii
import json
import logging
import os
from dataclasses import dataclass
from typing import Any

from dotenv import load_dotenv
from google import genai
from google.genai import types

from ...errors import GenerationFailedError
from ..codec import ImagePayload
from .interfaces import GenerationBackendProtocol, GenerationRequest, ImageValidation
from .prompts import VALIDATION_PROMPT, build_prompt

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_MODEL = "gemini-2.5-flash-image"
DEFAULT_VALIDATION_MODEL = "gemini-2.5-flash"

VALIDATION_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "isChibi": types.Schema(
            type=types.Type.BOOLEAN,
            description="True if the character is in a chibi art style.",
        ),
        "isSolo": types.Schema(
            type=types.Type.BOOLEAN,
            description="True if the image contains only one character.",
        ),
        "reason": types.Schema(
            type=types.Type.STRING,
            description="A brief explanation for the determination.",
        ),
    },
    required=["isChibi", "isSolo", "reason"],
)


def _coerce_bytes(blob: Any) -> bytes | None:
    if isinstance(blob, (bytes, bytearray)):
        return bytes(blob)
    if isinstance(blob, str):
        try:
            return base64.b64decode(blob)
        except (ValueError, binascii.Error):
            return None
    return None


def extract_image_bytes(response: Any) -> bytes:
    """Return the first inline image in a ``generate_content`` response."""

    for candidate in getattr(response, "candidates", None) or ():
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or ():
            inline = getattr(part, "inline_data", None)
            if inline is None:
                continue
            blob = _coerce_bytes(getattr(inline, "data", None))
            if blob:
                return blob
    raise GenerationFailedError("Could not find image data in Gemini response.")


def _part(image: ImagePayload) -> types.Part:
    return types.Part.from_bytes(data=image.data, mime_type=image.mime_type)


@dataclass
class GeminiImageBackend(GenerationBackendProtocol):
    client: Any
    image_model: str = DEFAULT_IMAGE_MODEL
    validation_model: str = DEFAULT_VALIDATION_MODEL

    async def generate(self, request: GenerationRequest) -> bytes:
        contents: list[Any] = []
        if request.base_image is not None:
            contents.append(_part(request.base_image))
        if request.reference_image is not None:
            contents.append(_part(request.reference_image))
        contents.append(build_prompt(request))

        try:
            response = await self.client.aio.models.generate_content(
                model=self.image_model,
                contents=contents,
                config=types.GenerateContentConfig(response_modalities=["IMAGE", "TEXT"]),
            )
        except Exception as exc:
            logger.error("image generation (%s) failed: %s", request.kind, exc)
            raise GenerationFailedError() from exc
        return extract_image_bytes(response)

    async def validate_image(self, image: ImagePayload) -> ImageValidation:
        try:
            response = await self.client.aio.models.generate_content(
                model=self.validation_model,
                contents=[_part(image), VALIDATION_PROMPT],
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=VALIDATION_SCHEMA,
                ),
            )
        except Exception as exc:
            logger.error("image validation failed: %s", exc)
            raise GenerationFailedError("Could not analyse the uploaded image.") from exc

        text = (getattr(response, "text", None) or "").strip()
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise GenerationFailedError("Invalid JSON payload from image validation") from exc
        if not isinstance(data, dict):
            raise GenerationFailedError("Unexpected response format from image validation")
        return ImageValidation(
            is_chibi=bool(data.get("isChibi", False)),
            is_solo=bool(data.get("isSolo", False)),
            reason=str(data.get("reason", "")).strip(),
        )


def create_gemini_backend(
    *,
    api_key: str | None = None,
    image_model: str = DEFAULT_IMAGE_MODEL,
    validation_model: str = DEFAULT_VALIDATION_MODEL,
) -> GeminiImageBackend:
    load_dotenv()
    key = api_key or os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY")
    client = genai.Client(api_key=key) if key else genai.Client()
    return GeminiImageBackend(client=client, image_model=image_model, validation_model=validation_model)


__all__ = ["GeminiImageBackend", "create_gemini_backend", "extract_image_bytes"]
