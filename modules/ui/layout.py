"""Gradio layout composition for the four studio tabs."""

from __future__ import annotations

from typing import Any, Sequence, Tuple

try:
    import gradio as gr
except ImportError:  # pragma: no cover
    gr = None  # type: ignore

from config.settings import AppConfig
from modules.chat.personas import PersonaRegistry
from modules.chat.session import ChatSession
from modules.chat.speech import SpeechOutput
from modules.pipelines.img2img import Image2ImageService
from modules.pipelines.text2img import AspectRatio, Text2ImageService
from modules.pipelines.text2video import Text2VideoService
from modules.services.genai_client import create_client
from modules.services.history_service import (
    IMAGE_EDIT_HISTORY_KEY,
    IMAGE_GENERATION_HISTORY_KEY,
    GenerationHistoryService,
)
from modules.services.preference_service import PreferenceService
from modules.services.storage_service import ProfileStore, StorageService
from modules.ui.callbacks import build_callbacks, display_image, history_gallery


def _aspect_choices() -> Sequence[Tuple[str, str]]:
    return [
        ("正方形 (1:1)", AspectRatio.SQUARE.value),
        ("横向 (16:9)", AspectRatio.LANDSCAPE.value),
        ("纵向 (9:16)", AspectRatio.PORTRAIT.value),
    ]


def build_app(config: AppConfig, client: Any = None) -> Any:
    """Compose and return the Gradio application."""
    if gr is None:
        raise RuntimeError("Gradio 未安装，请先执行依赖安装。")

    client = client or create_client(config)
    store = ProfileStore(config.profile_path)
    storage = StorageService(config.media_dir)
    preferences = PreferenceService(store)
    personas = PersonaRegistry(store, default_id=config.default_persona_id)
    image_history = GenerationHistoryService(store, IMAGE_GENERATION_HISTORY_KEY, config.history_limit)
    edit_history = GenerationHistoryService(store, IMAGE_EDIT_HISTORY_KEY, config.history_limit)

    callbacks_map = build_callbacks(
        config,
        text2img=Text2ImageService(config, client),
        image2img=Image2ImageService(config, client),
        text2video=Text2VideoService(config, client, storage),
        chat=ChatSession(config, client),
        personas=personas,
        preferences=preferences,
        image_history=image_history,
        edit_history=edit_history,
        speech=SpeechOutput(config, client, storage),
    )

    def generate_image(prompt: str, ratio: str):
        url, status, records = callbacks_map["on_generate_image"](prompt, ratio)
        return display_image(url), status, history_gallery(records)

    def select_image_history(evt: gr.SelectData):
        prompt, ratio, url, status = callbacks_map["on_select_image_history"](evt.index)
        return prompt, ratio, display_image(url), status

    def clear_image_history():
        records, status = callbacks_map["on_clear_image_history"]()
        return history_gallery(records), status

    def edit_image(source: Any, prompt: str):
        url, text, status, records = callbacks_map["on_edit_image"](source, prompt)
        return display_image(url), text, status, history_gallery(records)

    def select_edit_history(evt: gr.SelectData):
        prompt, source_url, url, status = callbacks_map["on_select_edit_history"](evt.index)
        return prompt, display_image(source_url), display_image(url), status

    def clear_edit_history():
        records, status = callbacks_map["on_clear_edit_history"]()
        return history_gallery(records), status

    def load_chat():
        choices, selected, display, status, tts_enabled = callbacks_map["initial_chat_state"]()
        return (
            gr.update(choices=choices, value=selected),
            display,
            status,
            tts_enabled,
            gr.update(visible=not personas.is_builtin(selected)),
        )

    def load_galleries():
        return history_gallery(image_history.list()), history_gallery(edit_history.list())

    def select_persona(persona_id: str):
        display, status, deletable = callbacks_map["on_select_persona"](persona_id)
        return display, status, gr.update(visible=deletable)

    def create_persona(name: str, instruction: str, welcome: str):
        choices, selected, display, status = callbacks_map["on_create_persona"](name, instruction, welcome)
        return gr.update(choices=choices, value=selected), display, status

    def clear_chat():
        display, status = callbacks_map["on_clear_chat"]()
        return display, status, None

    def delete_persona(persona_id: str):
        choices, selected, display, status = callbacks_map["on_delete_persona"](persona_id)
        return gr.update(choices=choices, value=selected), display, status, gr.update(visible=False)

    with gr.Blocks(title="Nexus AI Studio") as demo:
        gr.Markdown("## Nexus AI 创意工作室")

        # 图像生成
        with gr.Tab("图像生成"):
            with gr.Row():
                with gr.Column():
                    image_prompt = gr.Textbox(
                        label="提示词",
                        lines=4,
                        placeholder="例如：雄伟的森林，未来城市的电影感全景……",
                    )
                    aspect_ratio = gr.Radio(
                        label="画面比例",
                        choices=_aspect_choices(),
                        value=AspectRatio.SQUARE.value,
                    )
                    generate_btn = gr.Button("生成图像", variant="primary")
                with gr.Column():
                    image_output = gr.Image(label="生成结果", type="pil")
                    image_status = gr.Markdown("准备就绪。")
            image_gallery = gr.Gallery(label="生成历史（点击恢复）", columns=5, allow_preview=False)
            clear_image_btn = gr.Button("清空历史", variant="stop")

            generate_btn.click(
                fn=generate_image,
                inputs=[image_prompt, aspect_ratio],
                outputs=[image_output, image_status, image_gallery],
            )
            image_gallery.select(
                fn=select_image_history,
                inputs=None,
                outputs=[image_prompt, aspect_ratio, image_output, image_status],
            )
            clear_image_btn.click(fn=clear_image_history, outputs=[image_gallery, image_status])

        # 视频生成
        with gr.Tab("视频生成"):
            with gr.Row():
                with gr.Column():
                    video_prompt = gr.Textbox(
                        label="提示词",
                        lines=4,
                        placeholder="例如：霓虹全息投影的猫高速驾驶，日出时薄雾笼罩的宁静湖面……",
                    )
                    with gr.Row():
                        video_btn = gr.Button("生成视频", variant="primary")
                        cancel_video_btn = gr.Button("取消")
                with gr.Column():
                    video_output = gr.Video(label="生成结果")
                    video_status = gr.Markdown("视频生成通常需要几分钟。")

            video_btn.click(
                fn=callbacks_map["on_generate_video"],
                inputs=[video_prompt],
                outputs=[video_output, video_status],
            )
            cancel_video_btn.click(fn=callbacks_map["on_cancel_video"], outputs=[video_status])

        # 对话
        with gr.Tab("对话"):
            with gr.Row():
                persona_select = gr.Dropdown(label="角色", choices=[], interactive=True)
                delete_persona_btn = gr.Button("删除当前角色", variant="stop", visible=False)
                tts_toggle = gr.Checkbox(label="语音朗读回复", value=False)
            chatbot = gr.Chatbot(label="对话", type="messages", height=480)
            chat_status = gr.Markdown("")
            with gr.Row():
                chat_input = gr.Textbox(
                    label="消息",
                    placeholder="输入消息，或附加图片 / 音频……",
                    scale=4,
                )
                chat_attachment = gr.File(
                    label="附件",
                    file_types=["image", "audio"],
                    type="filepath",
                    scale=1,
                )
            with gr.Row():
                send_btn = gr.Button("发送", variant="primary")
                clear_chat_btn = gr.Button("清空对话")
                transcribe_audio = gr.Audio(
                    label="语音输入",
                    sources=["microphone", "upload"],
                    type="filepath",
                )
                transcribe_btn = gr.Button("转写到输入框")
            speech_output = gr.Audio(label="语音回复", autoplay=True, interactive=False)

            with gr.Accordion("创建自定义角色", open=False):
                persona_name = gr.Textbox(label="角色名称", placeholder="例如：毒舌机器人")
                persona_instruction = gr.Textbox(
                    label="角色指令",
                    lines=3,
                    placeholder="例如：你是一个不情愿但仍然会帮忙的毒舌机器人。",
                )
                persona_welcome = gr.Textbox(label="欢迎语", lines=2, placeholder="例如：哦，又来了一个人类。")
                save_persona_btn = gr.Button("保存角色")

            send_outputs = [chatbot, chat_input, chat_attachment, chat_status, speech_output]
            send_btn.click(
                fn=callbacks_map["on_chat_send"],
                inputs=[chat_input, chat_attachment],
                outputs=send_outputs,
                concurrency_limit=1,
            )
            chat_input.submit(
                fn=callbacks_map["on_chat_send"],
                inputs=[chat_input, chat_attachment],
                outputs=send_outputs,
                concurrency_limit=1,
            )
            clear_chat_btn.click(fn=clear_chat, outputs=[chatbot, chat_status, speech_output])
            transcribe_btn.click(
                fn=callbacks_map["on_transcribe_audio"],
                inputs=[transcribe_audio, chat_input],
                outputs=[chat_input, chat_status],
                concurrency_limit=1,
            )
            persona_select.input(
                fn=select_persona,
                inputs=[persona_select],
                outputs=[chatbot, chat_status, delete_persona_btn],
            )
            save_persona_btn.click(
                fn=create_persona,
                inputs=[persona_name, persona_instruction, persona_welcome],
                outputs=[persona_select, chatbot, chat_status],
            )
            delete_persona_btn.click(
                fn=delete_persona,
                inputs=[persona_select],
                outputs=[persona_select, chatbot, chat_status, delete_persona_btn],
            )
            tts_toggle.input(fn=callbacks_map["on_toggle_tts"], inputs=[tts_toggle], outputs=[chat_status])

        # 图像编辑
        with gr.Tab("图像编辑"):
            with gr.Row():
                with gr.Column():
                    source_image = gr.Image(label="1. 上传图像", type="filepath")
                    edit_prompt = gr.Textbox(
                        label="2. 描述修改",
                        lines=3,
                        placeholder="例如：给猫戴上一顶派对帽",
                    )
                    edit_btn = gr.Button("编辑图像", variant="primary")
                with gr.Column():
                    edited_output = gr.Image(label="编辑结果", type="pil")
                    edit_text = gr.Markdown()
                    edit_status = gr.Markdown("准备就绪。")
            edit_gallery = gr.Gallery(label="编辑历史（点击恢复）", columns=5, allow_preview=False)
            clear_edit_btn = gr.Button("清空历史", variant="stop")

            edit_btn.click(
                fn=edit_image,
                inputs=[source_image, edit_prompt],
                outputs=[edited_output, edit_text, edit_status, edit_gallery],
            )
            edit_gallery.select(
                fn=select_edit_history,
                inputs=None,
                outputs=[edit_prompt, source_image, edited_output, edit_status],
            )
            clear_edit_btn.click(fn=clear_edit_history, outputs=[edit_gallery, edit_status])

        demo.load(
            fn=load_chat,
            outputs=[persona_select, chatbot, chat_status, tts_toggle, delete_persona_btn],
        )
        demo.load(fn=load_galleries, outputs=[image_gallery, edit_gallery])

    return demo
