"""Environment-level settings for weekletter.

Loads the project .env file once (python-dotenv) and exposes the values that
external services need: the Gemini model and the Google Cloud project.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

_ENV_LOADED = False


def ensure_env_loaded(env_path: Path | None = None) -> None:
    """
    Load the .env file exactly once.

    Side Effects:
        - Populates os.environ from .env (existing variables win)
        - Sets module-level flag to prevent double-loading
    """
    global _ENV_LOADED
    if _ENV_LOADED:
        return

    candidate = env_path or PROJECT_ROOT / ".env"
    if candidate.exists():
        load_dotenv(candidate)
    else:
        load_dotenv()
    _ENV_LOADED = True


ensure_env_loaded()

# --- Gemini / Vertex AI ---
GOOGLE_CLOUD_PROJECT: str | None = os.getenv("GOOGLE_CLOUD_PROJECT")
GEMINI_LOCATION: str = os.getenv("GEMINI_LOCATION", "europe-west1")
GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
USE_LLM: bool = os.getenv("WEEKLETTER_USE_LLM", "true").lower() == "true"
