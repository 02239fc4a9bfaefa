from __future__ import annotations

import logging
from pathlib import Path

from dotenv import load_dotenv
from flask import Flask

from .config import Config
from .extensions import csrf, manuscripts


BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")


def create_app(config_class: type[Config] = Config) -> Flask:
    app = Flask(
        __name__,
        instance_relative_config=True,
        static_folder=str(BASE_DIR / "static"),
        static_url_path="/static",
    )
    app.config.from_object(config_class)
    app.config.setdefault("PROMPT_CONFIG_PATH", str(BASE_DIR / "prompt_config.json"))

    configure_logging(app)
    register_extensions(app)
    register_blueprints(app)

    return app


def configure_logging(app: Flask) -> None:
    level_name = str(app.config.get("LOG_LEVEL") or "INFO").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        app.logger.warning("Unknown LOG_LEVEL '%s'; using INFO.", level_name)
        level = logging.INFO
    app.logger.setLevel(level)


def register_extensions(app: Flask) -> None:
    csrf.init_app(app)
    manuscripts.init_app(app)


def register_blueprints(app: Flask) -> None:
    from .editor import bp as editor_bp
    from .main import bp as main_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(editor_bp)
