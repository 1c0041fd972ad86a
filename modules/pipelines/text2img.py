"""Text-to-image service backed by the Imagen API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from google.genai import types

from config.settings import AppConfig
from modules.errors import GenerationError
from modules.utils.image_utils import to_data_uri

logger = logging.getLogger(__name__)

OUTPUT_MIME_TYPE = "image/jpeg"


class AspectRatio(str, Enum):
    """Supported output shapes."""

    SQUARE = "1:1"
    LANDSCAPE = "16:9"
    PORTRAIT = "9:16"


@dataclass(slots=True)
class PromptRequest:
    """Request data for text-to-image generation."""

    prompt: str
    aspect_ratio: AspectRatio = AspectRatio.SQUARE


@dataclass(slots=True)
class ImageResult:
    """Result payload produced by the text-to-image service."""

    image_url: str
    prompt: str
    aspect_ratio: AspectRatio


class Text2ImageService:
    """Facade around the remote image generation model."""

    def __init__(self, config: AppConfig, client: Any) -> None:
        self.config = config
        self.client = client

    def generate(self, request: PromptRequest) -> ImageResult:
        """Generate exactly one image for the prompt."""
        prompt = request.prompt.strip()
        if not prompt:
            raise GenerationError("请输入提示词。")

        try:
            response = self.client.models.generate_images(
                model=self.config.image_model,
                prompt=prompt,
                config=types.GenerateImagesConfig(
                    number_of_images=1,
                    output_mime_type=OUTPUT_MIME_TYPE,
                    aspect_ratio=request.aspect_ratio.value,
                ),
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("Image generation request failed")
            raise GenerationError("图像生成服务通信失败，请稍后重试。") from exc

        generated = list(getattr(response, "generated_images", None) or [])
        image = getattr(generated[0], "image", None) if generated else None
        image_bytes = getattr(image, "image_bytes", None)
        if not image_bytes:
            logger.error("Image generation returned no output for prompt %r", prompt)
            raise GenerationError("生成失败：未收到任何图像输出。")

        return ImageResult(
            image_url=to_data_uri(image_bytes, OUTPUT_MIME_TYPE),
            prompt=prompt,
            aspect_ratio=request.aspect_ratio,
        )
