"""Instruction-driven image editing backed by a multimodal Gemini model."""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from google.genai import types

from config.settings import AppConfig
from modules.errors import EditError
from modules.utils.image_utils import to_data_uri

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ImageEditRequest:
    """Source image (base64) plus the edit instruction."""

    prompt: str
    image_data: str
    mime_type: str = "image/png"


@dataclass(frozen=True, slots=True)
class EditSuccess:
    image_url: str
    text: Optional[str] = None


@dataclass(frozen=True, slots=True)
class EditRefused:
    """The model answered with text only, usually a refusal or a question."""

    text: str


@dataclass(frozen=True, slots=True)
class EditEmpty:
    """Neither image nor text came back."""


ImageEditOutcome = Union[EditSuccess, EditRefused, EditEmpty]


def classify_edit_response(response: Any) -> ImageEditOutcome:
    """Reduce a generate_content response to one of the edit outcomes.

    The first inline image wins; every text part is kept, joined by newlines
    in response order.
    """
    image_url: Optional[str] = None
    texts: list[str] = []

    candidates = getattr(response, "candidates", None) or []
    content = getattr(candidates[0], "content", None) if candidates else None
    for part in getattr(content, "parts", None) or []:
        inline = getattr(part, "inline_data", None)
        if inline is not None and getattr(inline, "data", None):
            if image_url is None:
                image_url = to_data_uri(inline.data, inline.mime_type or "image/png")
            continue
        text = getattr(part, "text", None)
        if text:
            texts.append(text)

    joined = "\n".join(texts) if texts else None
    if image_url is not None:
        return EditSuccess(image_url=image_url, text=joined)
    if joined:
        return EditRefused(text=joined)
    return EditEmpty()


class Image2ImageService:
    """Facade around the remote image editing model."""

    def __init__(self, config: AppConfig, client: Any) -> None:
        self.config = config
        self.client = client

    def edit(self, request: ImageEditRequest) -> ImageEditOutcome:
        """Send one multimodal request and classify the answer."""
        try:
            source_bytes = base64.b64decode(request.image_data, validate=True)
        except binascii.Error as exc:
            raise EditError("上传的图像数据无法解析。", kind=EditError.INVALID) from exc

        try:
            response = self.client.models.generate_content(
                model=self.config.edit_model,
                contents=types.Content(
                    role="user",
                    parts=[
                        types.Part.from_bytes(
                            data=source_bytes,
                            mime_type=request.mime_type,
                        ),
                        types.Part.from_text(text=request.prompt),
                    ],
                ),
                config=types.GenerateContentConfig(
                    response_modalities=[types.Modality.IMAGE, types.Modality.TEXT],
                ),
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("Image edit request failed")
            raise EditError("图像编辑服务通信失败，请稍后重试。", kind=EditError.TRANSPORT) from exc
        return classify_edit_response(response)

    def generate(self, request: ImageEditRequest) -> EditSuccess:
        """Edit the image or raise EditError describing why nothing came back."""
        if not request.prompt.strip():
            raise EditError("请输入描述修改内容的提示词。", kind=EditError.INVALID)
        if not request.image_data:
            raise EditError("请先上传需要编辑的图像。", kind=EditError.INVALID)

        outcome = self.edit(request)
        if isinstance(outcome, EditSuccess):
            return outcome
        if isinstance(outcome, EditRefused):
            logger.warning("Edit model replied with text only: %s", outcome.text)
            raise EditError(
                f"模型只返回了文字，没有返回图像：“{outcome.text}”",
                kind=EditError.REFUSED,
                text=outcome.text,
            )
        logger.error("Edit model returned an empty response")
        raise EditError("编辑服务没有返回任何图像。", kind=EditError.EMPTY)
