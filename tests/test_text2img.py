"""Text2ImageService 单元测试。"""

import base64
from types import SimpleNamespace

import pytest

from config.settings import AppConfig
from modules.errors import GenerationError
from modules.pipelines import text2img


class DummyModels:
    """模拟 client.models，捕获调用参数。"""

    def __init__(self, images=None, error=None) -> None:
        self.images = images if images is not None else [b"fake-jpeg"]
        self.error = error
        self.called_with = None

    def generate_images(self, **kwargs):
        self.called_with = kwargs
        if self.error is not None:
            raise self.error
        return SimpleNamespace(
            generated_images=[SimpleNamespace(image=SimpleNamespace(image_bytes=data)) for data in self.images]
        )


def build_service(models: DummyModels) -> text2img.Text2ImageService:
    return text2img.Text2ImageService(AppConfig(), SimpleNamespace(models=models))


def test_generate_returns_data_uri():
    models = DummyModels()
    service = build_service(models)

    result = service.generate(text2img.PromptRequest(prompt=" a fox ", aspect_ratio=text2img.AspectRatio.LANDSCAPE))

    expected = base64.b64encode(b"fake-jpeg").decode("ascii")
    assert result.image_url == f"data:image/jpeg;base64,{expected}"
    assert result.prompt == "a fox"
    assert result.aspect_ratio is text2img.AspectRatio.LANDSCAPE
    assert models.called_with["model"] == AppConfig().image_model
    config = models.called_with["config"]
    assert config.number_of_images == 1
    assert config.aspect_ratio == "16:9"
    assert config.output_mime_type == "image/jpeg"


def test_generate_without_outputs_fails():
    service = build_service(DummyModels(images=[]))

    with pytest.raises(GenerationError, match="未收到任何图像输出"):
        service.generate(text2img.PromptRequest(prompt="empty"))


def test_generate_wraps_remote_errors():
    service = build_service(DummyModels(error=RuntimeError("quota exceeded")))

    with pytest.raises(GenerationError) as excinfo:
        service.generate(text2img.PromptRequest(prompt="a cat"))

    assert isinstance(excinfo.value.__cause__, RuntimeError)


def test_generate_rejects_blank_prompt():
    models = DummyModels()
    service = build_service(models)

    with pytest.raises(GenerationError):
        service.generate(text2img.PromptRequest(prompt="   "))
    assert models.called_with is None
