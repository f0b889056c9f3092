from __future__ import annotations

import io
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests
from PIL import Image

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from chibi_lab.errors import ConnectionFailedError, ValidationRejectedError
from chibi_lab.image.codec import (
    ImagePayload,
    compress_image,
    fetch_image_bytes,
    load_image_file,
    parse_data_uri,
    sniff_mime_type,
    to_data_uri,
)

from conftest import png_bytes


def test_data_uri_parsing(png: bytes) -> None:
    uri = to_data_uri(png)
    assert uri.startswith("data:image/png;base64,")
    assert parse_data_uri(uri) == ("image/png", png)
    assert ImagePayload.from_data_uri(uri).data == png

    with pytest.raises(ValueError):
        parse_data_uri("https://example.com/x.png")
    with pytest.raises(ValueError):
        parse_data_uri("data:image/png;base64,@@@")


def test_sniff_and_load(tmp_path: Path, png: bytes) -> None:
    assert sniff_mime_type(png) == "image/png"
    assert sniff_mime_type(b"not an image") is None

    path = tmp_path / "char.png"
    path.write_bytes(png)
    payload = load_image_file(path)
    assert payload.mime_type == "image/png"
    assert payload.name == "char.png"

    text = tmp_path / "notes.txt"
    text.write_text("hello", encoding="utf-8")
    with pytest.raises(ValidationRejectedError):
        load_image_file(text)
    with pytest.raises(ValidationRejectedError):
        load_image_file(tmp_path / "missing.png")


def test_fetch_file_url(tmp_path: Path, png: bytes) -> None:
    path = tmp_path / "stored image.png"
    path.write_bytes(png)
    assert fetch_image_bytes(path.as_uri()) == png
    with pytest.raises(ConnectionFailedError):
        fetch_image_bytes((tmp_path / "gone.png").as_uri())


def test_fetch_http_url(png: bytes) -> None:
    response = MagicMock()
    response.content = png
    response.raise_for_status.return_value = None
    with patch("chibi_lab.image.codec.requests.get", return_value=response) as get:
        assert fetch_image_bytes("https://cdn.example/x.png", timeout=3) == png
    get.assert_called_once_with("https://cdn.example/x.png", timeout=3)

    with patch("chibi_lab.image.codec.requests.get", side_effect=requests.ConnectionError("down")):
        with pytest.raises(ConnectionFailedError):
            fetch_image_bytes("https://cdn.example/x.png")


def test_compress_flattens_transparency() -> None:
    buffer = io.BytesIO()
    Image.new("RGBA", (4, 4), (255, 0, 0, 0)).save(buffer, format="PNG")
    jpeg = compress_image(buffer.getvalue(), quality=60)
    with Image.open(io.BytesIO(jpeg)) as img:
        assert img.format == "JPEG"
        assert img.mode == "RGB"
        r, g, b = img.getpixel((1, 1))
        assert min(r, g, b) > 240


def test_compress_keeps_size(png: bytes) -> None:
    jpeg = compress_image(png_bytes(size=16))
    with Image.open(io.BytesIO(jpeg)) as img:
        assert img.size == (16, 16)
