"""Utility script to write the local .env file and sanity-check the prompt configuration."""
from __future__ import annotations

import argparse
import secrets
import shutil
import sys
from pathlib import Path
from typing import Dict

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from kdp_author import create_app  # noqa: E402
from kdp_author.services.generation import GenerationError, load_prompt_entry  # noqa: E402
from kdp_author.services import assistant, book, chapters, outline, titles  # noqa: E402

DEFAULT_ENV_PATH = REPO_ROOT / ".env"
BACKUP_SUFFIX = ".bak"
PROMPT_KEYS = (
    outline.PROMPT_KEY,
    chapters.PROMPT_KEY,
    book.PROMPT_KEY,
    titles.PROMPT_KEY,
    assistant.PROMPT_KEY,
)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Create or update a .env file with the settings required for local development "
            "and check that every prompt template is present."
        )
    )
    parser.add_argument(
        "--flask-app",
        default="wsgi.py",
        help="Entry point used by Flask (default: wsgi.py)",
    )
    parser.add_argument(
        "--secret-key",
        required=False,
        help=(
            "Secret key for Flask sessions. If omitted, the current value in .env is preserved or "
            "a random key is generated."
        ),
    )
    parser.add_argument(
        "--backend",
        choices=("openai", "local"),
        help="Text generation backend (LLM_BACKEND).",
    )
    parser.add_argument("--openai-model", help="OpenAI model name (OPENAI_MODEL).")
    parser.add_argument("--openai-api-key", help="OpenAI API key (OPENAI_API_KEY).")
    parser.add_argument(
        "--model-path",
        help="Local Hugging Face model directory (TEXT_GENERATOR_MODEL_PATH).",
    )
    parser.add_argument(
        "--env-path",
        type=Path,
        default=DEFAULT_ENV_PATH,
        help="Path to the .env file that should be created/updated.",
    )
    parser.add_argument(
        "--skip-check",
        action="store_true",
        help="Only update the .env file without checking the prompt configuration.",
    )
    return parser.parse_args()


def read_env(path: Path) -> Dict[str, str]:
    if not path.exists():
        return {}
    data: Dict[str, str] = {}
    for line in path.read_text().splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, _, value = stripped.partition("=")
        data[key.strip()] = value.strip()
    return data


def write_env(path: Path, values: Dict[str, str]) -> None:
    if path.exists():
        backup_path = path.with_suffix(path.suffix + BACKUP_SUFFIX)
        shutil.copy(path, backup_path)
        print(f"Existing {path.name} backed up to {backup_path.name}.")
    lines = [f"{key}={value}" for key, value in values.items()]
    path.write_text("\n".join(lines) + "\n")
    print(f"Updated environment variables written to {path}.")


def update_env_file(args: argparse.Namespace) -> Dict[str, str]:
    env_data = read_env(args.env_path)
    env_updates = {"FLASK_APP": args.flask_app}
    if args.secret_key:
        env_updates["SECRET_KEY"] = args.secret_key
    elif "SECRET_KEY" not in env_data:
        env_updates["SECRET_KEY"] = secrets.token_hex(32)
    if args.backend:
        env_updates["LLM_BACKEND"] = args.backend
    if args.openai_model:
        env_updates["OPENAI_MODEL"] = args.openai_model
    if args.openai_api_key:
        env_updates["OPENAI_API_KEY"] = args.openai_api_key
    if args.model_path:
        env_updates["TEXT_GENERATOR_MODEL_PATH"] = args.model_path

    env_data.update(env_updates)
    write_env(args.env_path, env_data)
    return env_data


def check_prompt_config() -> bool:
    app = create_app()
    ok = True
    with app.app_context():
        for key in PROMPT_KEYS:
            try:
                load_prompt_entry(key)
            except GenerationError as exc:
                print(f"  [missing] {key}: {exc}")
                ok = False
            else:
                print(f"  [ok] {key}")
    return ok


def main() -> None:
    args = parse_args()
    env_values = update_env_file(args)

    if not args.skip_check:
        print("Checking prompt templates:")
        if not check_prompt_config():
            sys.exit(1)
    else:
        print("Prompt configuration check skipped.")

    print("\nSetup complete! Summary:")
    for key in sorted(env_values):
        value = env_values[key]
        if key in {"SECRET_KEY", "OPENAI_API_KEY"} and value:
            value = value[:4] + "…"
        print(f"  {key}={value}")


if __name__ == "__main__":
    main()
