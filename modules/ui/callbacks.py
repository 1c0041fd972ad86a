"""Callback implementations for the Gradio interface."""

from __future__ import annotations

import contextlib
import logging
import queue
import threading
from typing import Any, Dict, Iterator, List, Optional, Tuple

from config.settings import AppConfig
from modules.chat.personas import Persona, PersonaError, PersonaRegistry
from modules.chat.session import (
    Attachment,
    AttachmentKind,
    ChatSession,
    SessionState,
    Transcript,
    merge_transcription,
)
from modules.chat.speech import SpeechOutput
from modules.errors import GenerationCancelled, NexusError
from modules.pipelines.img2img import Image2ImageService, ImageEditRequest
from modules.pipelines.text2img import AspectRatio, PromptRequest, Text2ImageService
from modules.pipelines.text2video import Text2VideoService, VideoRequest
from modules.services.history_service import GenerationHistoryService, GenerationRecord
from modules.services.preference_service import PreferenceService
from modules.utils.image_utils import (
    data_uri_to_image,
    image_to_base64,
    placeholder_image,
    to_data_uri,
)

logger = logging.getLogger(__name__)

VIDEO_PROGRESS_MESSAGES = (
    "正在预热视频引擎……",
    "正在生成初始分镜……",
    "正在渲染高清画面（这可能需要一些时间）……",
    "正在添加视觉效果……",
    "正在编码你的作品……",
    "即将完成，正在准备下载……",
)

PersonaChoices = List[Tuple[str, str]]
ChatDisplay = List[Dict[str, str]]


def transcript_to_display(transcript: Transcript) -> ChatDisplay:
    """Convert transcript messages into Gradio ``messages`` chatbot entries."""
    display: ChatDisplay = []
    for message in transcript:
        segments: list[str] = []
        for part in message.parts:
            if part.inline_data is not None:
                mime_type = part.inline_data.mime_type
                label = "🎤 音频附件" if mime_type.startswith("audio/") else "🖼️ 图片附件"
                segments.append(f"[{label} · {mime_type}]")
            elif part.text:
                segments.append(part.text)
        role = "user" if message.role == "user" else "assistant"
        display.append({"role": role, "content": "\n".join(segments)})
    return display


def display_image(url: Optional[str]) -> Any:
    """Decode a stored data URI for display; None if absent or unreadable."""
    if not url:
        return None
    try:
        return data_uri_to_image(url)
    except (OSError, ValueError) as exc:
        logger.warning("Could not decode image for display: %s", exc)
        return None


def history_gallery(records: List[GenerationRecord]) -> List[Tuple[Any, str]]:
    """One gallery item per record, in order, so a selected index maps back to its record."""
    items: List[Tuple[Any, str]] = []
    for record in records:
        image = display_image(record.result_url)
        if image is None:
            items.append((placeholder_image(), f"{record.prompt}（图像无法显示）"))
        else:
            items.append((image, record.prompt))
    return items


def persona_choices(registry: PersonaRegistry) -> PersonaChoices:
    choices: PersonaChoices = []
    for persona in registry.list():
        group = "内置" if registry.is_builtin(persona.id) else "自定义"
        choices.append((f"{group} · {persona.name}", persona.id))
    return choices


def build_callbacks(
    config: AppConfig,
    text2img: Optional[Text2ImageService] = None,
    image2img: Optional[Image2ImageService] = None,
    text2video: Optional[Text2VideoService] = None,
    chat: Optional[ChatSession] = None,
    personas: Optional[PersonaRegistry] = None,
    preferences: Optional[PreferenceService] = None,
    image_history: Optional[GenerationHistoryService] = None,
    edit_history: Optional[GenerationHistoryService] = None,
    speech: Optional[SpeechOutput] = None,
) -> dict[str, Any]:
    """Return a dictionary of Gradio callback functions."""

    def _ensure_text_service() -> Text2ImageService:
        if text2img is None:
            raise RuntimeError("图像生成服务未配置")
        return text2img

    def _ensure_edit_service() -> Image2ImageService:
        if image2img is None:
            raise RuntimeError("图像编辑服务未配置")
        return image2img

    def _ensure_video_service() -> Text2VideoService:
        if text2video is None:
            raise RuntimeError("视频生成服务未配置")
        return text2video

    def _ensure_chat() -> Tuple[ChatSession, PersonaRegistry]:
        if chat is None or personas is None:
            raise RuntimeError("对话服务未配置")
        return chat, personas

    def _parse_aspect_ratio(value: Any) -> AspectRatio:
        try:
            return AspectRatio(value)
        except ValueError:
            return AspectRatio.SQUARE

    def _records(history: Optional[GenerationHistoryService]) -> List[GenerationRecord]:
        return history.list() if history is not None else []

    def _pick(history: Optional[GenerationHistoryService], index: Any) -> Optional[GenerationRecord]:
        records = _records(history)
        try:
            position = int(index)
        except (TypeError, ValueError):
            return None
        if 0 <= position < len(records):
            return records[position]
        return None

    # 图像生成 ---------------------------------------------------------------
    def on_generate_image(prompt: str, aspect_ratio: str) -> tuple[Optional[str], str, List[GenerationRecord]]:
        if not (prompt or "").strip():
            return None, "请输入提示词。", _records(image_history)

        service = _ensure_text_service()
        ratio = _parse_aspect_ratio(aspect_ratio)
        try:
            result = service.generate(PromptRequest(prompt=prompt, aspect_ratio=ratio))
        except NexusError as exc:
            return None, f"生成失败：{exc}", _records(image_history)

        if image_history is not None:
            image_history.record(
                prompt=result.prompt,
                result_url=result.image_url,
                aspect_ratio=result.aspect_ratio.value,
            )
        return result.image_url, "生成成功", _records(image_history)

    def on_select_image_history(index: Any) -> tuple[str, str, Optional[str], str]:
        record = _pick(image_history, index)
        if record is None:
            return "", AspectRatio.SQUARE.value, None, "未找到该历史记录。"
        ratio = _parse_aspect_ratio(record.aspect_ratio).value
        return record.prompt, ratio, record.result_url, "已从历史记录恢复。"

    def on_clear_image_history() -> tuple[List[GenerationRecord], str]:
        if image_history is not None:
            image_history.clear()
        return [], "历史记录已清空。"

    # 视频生成 ---------------------------------------------------------------
    def on_generate_video(prompt: str) -> Iterator[tuple[Optional[str], str]]:
        if not (prompt or "").strip():
            yield None, "请输入提示词。"
            return

        service = _ensure_video_service()
        updates: "queue.Queue[Optional[str]]" = queue.Queue()
        outcome: dict[str, Any] = {}
        position = [0]

        def _on_progress() -> None:
            position[0] = (position[0] + 1) % len(VIDEO_PROGRESS_MESSAGES)
            updates.put(VIDEO_PROGRESS_MESSAGES[position[0]])

        def _worker() -> None:
            try:
                outcome["result"] = service.generate(VideoRequest(prompt=prompt), on_progress=_on_progress)
            except Exception as exc:  # noqa: BLE001
                outcome["error"] = exc
            finally:
                updates.put(None)

        yield None, VIDEO_PROGRESS_MESSAGES[0]
        worker = threading.Thread(target=_worker, name="video-generation", daemon=True)
        worker.start()
        while True:
            message = updates.get()
            if message is None:
                break
            yield None, message
        worker.join()

        error = outcome.get("error")
        if isinstance(error, GenerationCancelled):
            yield None, str(error)
            return
        if error is not None:
            if not isinstance(error, NexusError):
                logger.error("Unexpected video generation failure", exc_info=error)
            yield None, f"生成失败：{error}"
            return
        yield str(outcome["result"].video_path), "视频生成成功"

    def on_cancel_video() -> str:
        service = _ensure_video_service()
        if service.cancel():
            return "正在取消视频生成……"
        return "当前没有进行中的视频生成任务。"

    # 图像编辑 ---------------------------------------------------------------
    def on_edit_image(
        source_image: Any, prompt: str
    ) -> tuple[Optional[str], str, str, List[GenerationRecord]]:
        if not (prompt or "").strip():
            return None, "", "请输入描述修改内容的提示词。", _records(edit_history)
        if source_image is None:
            return None, "", "请先上传需要编辑的图像。", _records(edit_history)

        service = _ensure_edit_service()
        try:
            image_data, mime_type = image_to_base64(source_image)
        except (OSError, ValueError) as exc:
            return None, "", f"无法读取上传的图像：{exc}", _records(edit_history)
        if not mime_type.startswith("image/"):
            return None, "", "请上传有效的图像文件。", _records(edit_history)

        try:
            result = service.generate(
                ImageEditRequest(prompt=prompt, image_data=image_data, mime_type=mime_type)
            )
        except NexusError as exc:
            return None, "", f"编辑失败：{exc}", _records(edit_history)

        if edit_history is not None:
            edit_history.record(
                prompt=prompt,
                result_url=result.image_url,
                source_url=to_data_uri(image_data, mime_type),
            )
        return result.image_url, result.text or "", "编辑成功", _records(edit_history)

    def on_select_edit_history(index: Any) -> tuple[str, Optional[str], Optional[str], str]:
        record = _pick(edit_history, index)
        if record is None:
            return "", None, None, "未找到该历史记录。"
        return record.prompt, record.source_url, record.result_url, "已从历史记录恢复。"

    def on_clear_edit_history() -> tuple[List[GenerationRecord], str]:
        if edit_history is not None:
            edit_history.clear()
        return [], "编辑历史已清空。"

    # 对话 -------------------------------------------------------------------
    def _start_persona(persona: Persona) -> tuple[ChatDisplay, str]:
        session, _ = _ensure_chat()
        if speech is not None:
            speech.cancel()
        try:
            transcript = session.start(persona)
        except NexusError as exc:
            return transcript_to_display(session.transcript), str(exc)
        if preferences is not None:
            preferences.selected_persona_id = persona.id
        return transcript_to_display(transcript), f"当前角色：{persona.name}"

    def initial_chat_state() -> tuple[PersonaChoices, str, ChatDisplay, str, bool]:
        _, registry = _ensure_chat()
        stored_id = preferences.selected_persona_id if preferences is not None else None
        persona = registry.resolve(stored_id)
        display, status = _start_persona(persona)
        tts_enabled = preferences.tts_enabled if preferences is not None else False
        return persona_choices(registry), persona.id, display, status, tts_enabled

    def on_select_persona(persona_id: str) -> tuple[ChatDisplay, str, bool]:
        _, registry = _ensure_chat()
        persona = registry.resolve(persona_id)
        display, status = _start_persona(persona)
        return display, status, not registry.is_builtin(persona.id)

    def on_create_persona(
        name: str, instruction: str, welcome_message: str
    ) -> tuple[PersonaChoices, str, ChatDisplay, str]:
        session, registry = _ensure_chat()
        try:
            persona = registry.create(name, instruction, welcome_message)
        except PersonaError as exc:
            current = session.persona.id if session.persona else registry.default_id
            return persona_choices(registry), current, transcript_to_display(session.transcript), f"保存失败：{exc}"
        display, status = _start_persona(persona)
        return persona_choices(registry), persona.id, display, status

    def on_delete_persona(persona_id: str) -> tuple[PersonaChoices, str, ChatDisplay, str]:
        session, registry = _ensure_chat()
        if not registry.delete(persona_id):
            current = session.persona.id if session.persona else registry.default_id
            return persona_choices(registry), current, transcript_to_display(session.transcript), "内置角色不可删除。"
        persona = registry.resolve(None)
        display, status = _start_persona(persona)
        return persona_choices(registry), persona.id, display, status

    def on_clear_chat() -> tuple[ChatDisplay, str]:
        session, registry = _ensure_chat()
        persona = session.persona or registry.resolve(
            preferences.selected_persona_id if preferences is not None else None
        )
        if speech is not None:
            speech.cancel()
        try:
            transcript = session.start(persona)
        except NexusError as exc:
            return transcript_to_display(session.transcript), str(exc)
        return transcript_to_display(transcript), "对话已清空。"

    def on_chat_send(
        text: str, attachment_path: Optional[str]
    ) -> Iterator[tuple[ChatDisplay, str, Optional[str], str, Optional[str]]]:
        session, _ = _ensure_chat()
        if session.busy:
            yield transcript_to_display(session.transcript), text, attachment_path, "正在生成回复，请稍候。", None
            return
        attachment: Optional[Attachment] = None
        if attachment_path:
            try:
                attachment = Attachment.from_file(attachment_path)
            except (OSError, ValueError) as exc:
                yield transcript_to_display(session.transcript), text, attachment_path, f"附件处理失败：{exc}", None
                return
        if not (text or "").strip() and attachment is None:
            yield transcript_to_display(session.transcript), text, attachment_path, "请输入消息或添加附件。", None
            return

        speaker = speech if speech is not None and preferences is not None and preferences.tts_enabled else None
        transcript: Optional[Transcript] = None
        audio_path: Optional[str] = None
        try:
            with speaker or contextlib.nullcontext():
                for transcript in session.send(text, attachment):
                    yield transcript_to_display(transcript), "", None, "正在生成回复……", None
                if speaker is not None and transcript and transcript[-1].role == "model":
                    spoken = speaker.speak(transcript[-1].text)
                    audio_path = str(spoken) if spoken else None
        except NexusError as exc:
            yield transcript_to_display(session.transcript), text, attachment_path, f"对话失败：{exc}", None
            return
        if transcript is None:
            # send() yields nothing when another reply holds the session or it never started
            if session.state in (SessionState.UNINITIALIZED, SessionState.FAILED):
                status = "对话尚未就绪，请重新选择角色。"
            else:
                status = "正在生成回复，请稍候。"
            yield transcript_to_display(session.transcript), text, attachment_path, status, None
            return
        yield transcript_to_display(session.transcript), "", None, "", audio_path

    def on_transcribe_audio(audio_path: Optional[str], current_input: str) -> tuple[str, str]:
        session, _ = _ensure_chat()
        if not audio_path:
            return current_input, "请先录制或上传音频。"
        try:
            attachment = Attachment.from_file(audio_path)
        except (OSError, ValueError) as exc:
            return current_input, f"音频读取失败：{exc}"
        if attachment.kind is not AttachmentKind.AUDIO:
            return current_input, "请上传音频文件。"
        try:
            transcription = session.transcribe_audio(attachment)
        except NexusError as exc:
            return current_input, f"转写失败：{exc}"
        if transcription is None:
            return current_input, "已有转写任务在进行中。"
        return merge_transcription(current_input, transcription), "转写完成"

    def on_toggle_tts(enabled: bool) -> str:
        if preferences is not None:
            preferences.tts_enabled = bool(enabled)
        if not enabled and speech is not None:
            speech.cancel()
        return "已开启语音朗读" if enabled else "已关闭语音朗读"

    return {
        "on_generate_image": on_generate_image,
        "on_select_image_history": on_select_image_history,
        "on_clear_image_history": on_clear_image_history,
        "on_generate_video": on_generate_video,
        "on_cancel_video": on_cancel_video,
        "on_edit_image": on_edit_image,
        "on_select_edit_history": on_select_edit_history,
        "on_clear_edit_history": on_clear_edit_history,
        "initial_chat_state": initial_chat_state,
        "on_select_persona": on_select_persona,
        "on_create_persona": on_create_persona,
        "on_delete_persona": on_delete_persona,
        "on_clear_chat": on_clear_chat,
        "on_chat_send": on_chat_send,
        "on_transcribe_audio": on_transcribe_audio,
        "on_toggle_tts": on_toggle_tts,
    }
