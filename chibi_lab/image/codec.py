"""Conversions between raw image bytes, data URIs and fetchable URLs."""

from __future__ import annotations

import base64
import binascii
import io
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

import requests
from PIL import Image, UnidentifiedImageError

from ..errors import ConnectionFailedError, ValidationRejectedError

DEFAULT_MIME_TYPE = "image/png"
ACCEPTED_MIME_TYPES = ("image/png", "image/jpeg", "image/webp")


@dataclass(frozen=True)
class ImagePayload:
    """Image bytes with their MIME type, the unit passed to the image backend."""

    data: bytes
    mime_type: str = DEFAULT_MIME_TYPE
    name: str = ""

    @property
    def base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    @property
    def data_uri(self) -> str:
        return to_data_uri(self.data, self.mime_type)

    @classmethod
    def from_data_uri(cls, uri: str, *, name: str = "") -> "ImagePayload":
        mime_type, data = parse_data_uri(uri)
        return cls(data=data, mime_type=mime_type, name=name)


def is_data_uri(value: str) -> bool:
    return isinstance(value, str) and value.startswith("data:")


def to_data_uri(data: bytes, mime_type: str = DEFAULT_MIME_TYPE) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def parse_data_uri(uri: str) -> tuple[str, bytes]:
    """Split ``data:<mime>;base64,<payload>`` into its MIME type and bytes."""

    if not is_data_uri(uri):
        raise ValueError("not a data URI")
    header, sep, payload = uri.partition(",")
    if not sep:
        raise ValueError("data URI has no payload")
    meta = header[len("data:"):]
    parts = [part for part in meta.split(";") if part]
    mime_type = parts[0] if parts and "/" in parts[0] else DEFAULT_MIME_TYPE
    if "base64" in parts:
        try:
            return mime_type, base64.b64decode(payload, validate=True)
        except (ValueError, binascii.Error) as exc:
            raise ValueError("data URI payload is not valid base64") from exc
    return mime_type, unquote(payload).encode("utf-8")


def sniff_mime_type(data: bytes) -> str | None:
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
    except (UnidentifiedImageError, OSError):
        return None
    if not fmt:
        return None
    return Image.MIME.get(fmt)


def load_image_file(path: Path) -> ImagePayload:
    """Read an image from disk, rejecting files that are not PNG/JPEG/WebP."""

    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise ValidationRejectedError(f"Could not read image file {path}: {exc}") from exc
    mime_type = sniff_mime_type(data) or mimetypes.guess_type(path.name)[0]
    if mime_type not in ACCEPTED_MIME_TYPES:
        raise ValidationRejectedError(
            f"{path.name} is not a supported image. Please use PNG, JPEG or WebP."
        )
    return ImagePayload(data=data, mime_type=mime_type, name=path.name)


def fetch_image_bytes(locator: str, *, timeout: float = 30.0) -> bytes:
    """Resolve a data URI, ``file://`` URL or HTTP(S) URL to raw bytes."""

    if is_data_uri(locator):
        return parse_data_uri(locator)[1]
    parsed = urlparse(locator)
    if parsed.scheme == "file":
        local = Path(url2pathname(unquote(parsed.path)))
        try:
            return local.read_bytes()
        except OSError as exc:
            raise ConnectionFailedError(f"Could not read image at {locator}") from exc
    if parsed.scheme in {"http", "https"}:
        try:
            response = requests.get(locator, timeout=timeout)
            response.raise_for_status()
        except requests.Timeout as exc:
            raise ConnectionFailedError("Timed out downloading image") from exc
        except requests.RequestException as exc:
            raise ConnectionFailedError(f"Could not download image from {locator}") from exc
        return response.content
    raise ValueError(f"unsupported image locator: {locator[:40]!r}")


def compress_image(data: bytes, *, quality: int = 75, exif: bytes | None = None) -> bytes:
    """Re-encode ``data`` as JPEG, flattening transparency onto white."""

    with Image.open(io.BytesIO(data)) as img:
        img.load()
        if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
            rgba = img.convert("RGBA")
            flattened = Image.new("RGB", rgba.size, (255, 255, 255))
            flattened.paste(rgba, mask=rgba.split()[-1])
        else:
            flattened = img.convert("RGB")
    buffer = io.BytesIO()
    save_kwargs: dict[str, object] = {"format": "JPEG", "quality": int(quality)}
    if exif:
        save_kwargs["exif"] = exif
    flattened.save(buffer, **save_kwargs)
    return buffer.getvalue()


__all__ = [
    "ACCEPTED_MIME_TYPES",
    "DEFAULT_MIME_TYPE",
    "ImagePayload",
    "compress_image",
    "fetch_image_bytes",
    "is_data_uri",
    "load_image_file",
    "parse_data_uri",
    "sniff_mime_type",
    "to_data_uri",
]
