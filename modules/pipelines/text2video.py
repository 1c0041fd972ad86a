"""Text-to-video service backed by the Veo long-running operation API."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

import requests
from google.genai import types

from config.settings import AppConfig
from modules.errors import GenerationCancelled, GenerationError
from modules.services.storage_service import StorageService

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[], None]


@dataclass(slots=True)
class VideoRequest:
    """Request data for text-to-video generation."""

    prompt: str


@dataclass(slots=True)
class VideoResult:
    """Downloaded video and how many status checks it took."""

    video_path: Path
    prompt: str
    polls: int


def _video_uri(operation: Any) -> Optional[str]:
    response = getattr(operation, "response", None) or getattr(operation, "result", None)
    videos = getattr(response, "generated_videos", None) or []
    if not videos:
        return None
    video = getattr(videos[0], "video", None)
    return getattr(video, "uri", None)


class Text2VideoService:
    """Submit a video job, poll it until done and download the result.

    Polling happens every ``config.video_poll_interval`` seconds and gives up
    after ``config.video_max_wait`` seconds. ``cancel()`` (or setting the
    ``cancel_event`` passed to ``generate``) stops the loop at the next wait.
    """

    def __init__(
        self,
        config: AppConfig,
        client: Any,
        storage: StorageService,
        http: Optional[requests.Session] = None,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.config = config
        self.client = client
        self.storage = storage
        self.http = http or requests.Session()
        self._sleep = sleep
        self._clock = clock or time.monotonic
        self._active_cancel: Optional[threading.Event] = None

    def cancel(self) -> bool:
        """Request cancellation of the running generation, if any."""
        event = self._active_cancel
        if event is None:
            return False
        event.set()
        return True

    def _wait(self, cancel_event: threading.Event) -> None:
        if self._sleep is not None:
            self._sleep(self.config.video_poll_interval)
        else:
            cancel_event.wait(self.config.video_poll_interval)

    def generate(
        self,
        request: VideoRequest,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> VideoResult:
        """Generate one video and return the local file it was saved to."""
        prompt = request.prompt.strip()
        if not prompt:
            raise GenerationError("请输入提示词。")

        cancel_event = cancel_event or threading.Event()
        self._active_cancel = cancel_event
        try:
            operation, polls = self._run_operation(prompt, on_progress, cancel_event)
            uri = _video_uri(operation)
            if not uri:
                logger.error("Video operation finished without a download link")
                raise GenerationError("视频生成已完成，但未找到下载链接。")
            video_path = self._download(uri)
        finally:
            self._active_cancel = None

        logger.info("Video saved to %s after %d polls", video_path, polls)
        return VideoResult(video_path=video_path, prompt=prompt, polls=polls)

    def _run_operation(
        self,
        prompt: str,
        on_progress: Optional[ProgressCallback],
        cancel_event: threading.Event,
    ) -> tuple[Any, int]:
        try:
            operation = self.client.models.generate_videos(
                model=self.config.video_model,
                prompt=prompt,
                config=types.GenerateVideosConfig(number_of_videos=1),
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("Video generation request failed")
            raise GenerationError("视频生成服务通信失败，请稍后重试。") from exc

        deadline = self._clock() + self.config.video_max_wait
        polls = 0
        while not operation.done:
            if cancel_event.is_set():
                raise GenerationCancelled("视频生成已取消。")
            if self._clock() >= deadline:
                logger.error("Video operation exceeded %.0fs", self.config.video_max_wait)
                raise GenerationError(
                    f"视频生成超时（超过 {int(self.config.video_max_wait)} 秒），请稍后重试。"
                )
            if on_progress is not None:
                on_progress()
            polls += 1
            self._wait(cancel_event)
            if cancel_event.is_set():
                raise GenerationCancelled("视频生成已取消。")
            try:
                operation = self.client.operations.get(operation)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Video status check failed")
                raise GenerationError("查询视频生成进度失败，请稍后重试。") from exc

        error = getattr(operation, "error", None)
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            logger.error("Video operation failed: %s", message)
            raise GenerationError(f"视频生成失败：{message}")
        return operation, polls

    def _download(self, uri: str) -> Path:
        try:
            response = self.http.get(
                uri,
                params={"key": self.config.api_key},
                timeout=self.config.video_download_timeout,
            )
        except requests.RequestException as exc:
            logger.exception("Video download failed")
            raise GenerationError("下载视频文件失败，请稍后重试。") from exc
        if not response.ok:
            logger.error("Video download returned %s %s", response.status_code, response.reason)
            raise GenerationError(f"下载视频文件失败：{response.reason or response.status_code}")
        path = self.storage.save_bytes(response.content, suffix=".mp4", prefix="video")
        self.storage.cleanup(max_items=self.config.history_limit, prefix="video")
        return path
