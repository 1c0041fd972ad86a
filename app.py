"""Application entry point for the Nexus Studio project."""

from __future__ import annotations

import sys
from typing import Optional

from config.settings import ConfigurationError, load_config
from modules.ui.layout import build_app
from modules.utils.logging import setup_logging


def main(config_path: Optional[str] = None) -> None:
    """Load configuration and launch the Gradio interface."""
    try:
        config = load_config(config_path)
    except ConfigurationError as exc:
        print(f"[error] {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    logger = setup_logging(config)
    logger.info("Starting Nexus Studio with data dir %s", config.data_dir)
    app = build_app(config)
    app.queue()
    app.launch(share=False, inbrowser=False)


if __name__ == "__main__":
    main()
