"""Manual script to verify the Gemini API key works."""

from __future__ import annotations

from config.settings import ConfigurationError, load_config
from modules.services.genai_client import create_client

try:
    config = load_config()  # 会读取 .env 并写入 os.environ
except ConfigurationError as exc:
    print("[error]", exc)
    raise SystemExit(1)

client = create_client(config, timeout_ms=30_000)

try:
    models = list(client.models.list())
    print("Models count:", len(models))
    for item in models[:5]:
        print("-", item.name)

    response = client.models.generate_content(
        model=config.chat_model,
        contents="简要描述一只坐在窗台上的橘猫。",
    )
    print("Generation:", response.text)
except Exception as exc:  # noqa: BLE001
    print("[error]", exc)
    raise
