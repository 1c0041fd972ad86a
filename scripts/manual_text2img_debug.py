"""One-off script for debugging text-to-image generation against the real API."""

import base64
from pathlib import Path

from config.settings import load_config
from modules.pipelines.text2img import Text2ImageService
from modules.services.genai_client import create_client
from modules.services.history_service import IMAGE_GENERATION_HISTORY_KEY, GenerationHistoryService
from modules.services.storage_service import ProfileStore
from modules.ui.callbacks import build_callbacks
from modules.utils.image_utils import split_data_uri


def main() -> None:
    # 1. 准备真实配置与服务对象（历史写到临时的 profile，避免污染正式数据）
    config = load_config()
    client = create_client(config)
    store = ProfileStore(Path("debug_profile.json"))

    callbacks = build_callbacks(
        config,
        text2img=Text2ImageService(config, client),
        image_history=GenerationHistoryService(store, IMAGE_GENERATION_HISTORY_KEY),
    )

    # 2. 调用文生图回调，执行真实请求
    prompt = "夕阳下的未来城市街景，穿红色和服的少女，霓虹灯闪烁"
    image_url, status, records = callbacks["on_generate_image"](prompt, "9:16")

    print("状态:", status)
    print("历史条数:", len(records))
    if image_url:
        _, payload = split_data_uri(image_url)
        out_path = Path("debug_text2img_output.jpg")
        out_path.write_bytes(base64.b64decode(payload))
        print("图像已保存:", out_path.resolve())
    else:
        print("未返回图像，请检查状态信息。")


if __name__ == "__main__":
    main()
