import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    """Base configuration shared across environments."""

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me")
    WTF_CSRF_TIME_LIMIT = None
    PROMPT_CONFIG_PATH = os.environ.get("PROMPT_CONFIG_PATH", str(BASE_DIR / "prompt_config.json"))
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    LLM_BACKEND = os.environ.get("LLM_BACKEND", "openai")
    OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
    OPENAI_MODEL = os.environ.get("OPENAI_MODEL", "gpt-4o-mini")
    OPENAI_MAX_TOKENS = int(os.environ.get("OPENAI_MAX_TOKENS", "4096"))
    OPENAI_TIMEOUT = float(os.environ.get("OPENAI_TIMEOUT", "120"))
    TEXT_GENERATOR_MODEL_PATH = os.environ.get("TEXT_GENERATOR_MODEL_PATH")

    # Rebind a chapter whose generated title drifts from its outline stub.
    ENFORCE_TARGET_TITLE = _env_flag("ENFORCE_TARGET_TITLE", True)


class TestConfig(Config):
    TESTING = True
    WTF_CSRF_ENABLED = False
    SECRET_KEY = "test-secret"
    OPENAI_API_KEY = None
    LLM_BACKEND = "openai"
