"""Utility helpers for moving media between files, base64 and data URIs."""

from __future__ import annotations

import base64
import binascii
import io
import mimetypes
from pathlib import Path
from typing import Any, Tuple, Union

from PIL import Image

DEFAULT_IMAGE_MIME = "image/png"


def to_data_uri(data: Union[bytes, str], mime_type: str) -> str:
    """Build a data URI from raw bytes or an already base64-encoded string."""
    if isinstance(data, bytes):
        data = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{data}"


def split_data_uri(uri: str) -> Tuple[str, str]:
    """Return ``(mime_type, base64_payload)`` for a data URI."""
    if not uri.startswith("data:") or "," not in uri:
        raise ValueError("不是有效的 data URI")
    header, payload = uri.split(",", 1)
    mime_type = header[len("data:"):].split(";", 1)[0] or DEFAULT_IMAGE_MIME
    return mime_type, payload


def guess_mime_type(path: Union[str, Path], fallback: str = "application/octet-stream") -> str:
    mime_type, _ = mimetypes.guess_type(str(path))
    return mime_type or fallback


def read_media_file(path: Union[str, Path]) -> Tuple[bytes, str]:
    """Read a user-selected file and return its bytes and mime type."""
    file_path = Path(path)
    return file_path.read_bytes(), guess_mime_type(file_path)


def image_to_base64(image: Any, fmt: str = "PNG") -> Tuple[str, str]:
    """Encode a PIL image (as handed over by Gradio) into base64 plus mime type."""
    if isinstance(image, (str, Path)):
        data, mime_type = read_media_file(image)
        return base64.b64encode(data).decode("ascii"), mime_type
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return base64.b64encode(buffer.getvalue()).decode("ascii"), f"image/{fmt.lower()}"


def data_uri_to_image(uri: str) -> Image.Image:
    """Decode a data URI into a PIL image for display."""
    _, payload = split_data_uri(uri)
    try:
        raw = base64.b64decode(payload, validate=True)
    except binascii.Error as exc:
        raise ValueError("图像数据已损坏") from exc
    image = Image.open(io.BytesIO(raw))
    image.load()
    return image


def placeholder_image(size: int = 128) -> Image.Image:
    """Neutral tile shown in place of an image that cannot be decoded."""
    return Image.new("RGB", (size, size), (208, 208, 208))
