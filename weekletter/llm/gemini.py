"""
Gemini model access for event extraction.

The model is built once per process on first use, through Vertex AI with
GOOGLE_CLOUD_PROJECT and the ambient service account credentials.
"""

from __future__ import annotations

from functools import lru_cache

from weekletter.infrastructure.settings import GEMINI_LOCATION, GEMINI_MODEL, GOOGLE_CLOUD_PROJECT
from weekletter.observability.logging import get_logger

logger = get_logger(__name__)


class GeminiInitializationError(RuntimeError):
    """Vertex AI could not produce a model."""


@lru_cache(maxsize=1)
def get_gemini_model():
    """
    Shared GenerativeModel for GEMINI_MODEL.

    Raises:
        GeminiInitializationError: No project configured, or vertexai.init failed
    """
    if not GOOGLE_CLOUD_PROJECT:
        raise GeminiInitializationError("GOOGLE_CLOUD_PROJECT not set")

    import vertexai
    from vertexai.generative_models import GenerativeModel

    try:
        vertexai.init(project=GOOGLE_CLOUD_PROJECT, location=GEMINI_LOCATION)
        model = GenerativeModel(GEMINI_MODEL)
    except Exception as e:
        logger.error("Gemini setup failed for project %s: %s", GOOGLE_CLOUD_PROJECT, e)
        raise GeminiInitializationError(f"Failed to initialize Gemini: {e}") from e

    logger.info("Gemini ready: %s in %s/%s", GEMINI_MODEL, GOOGLE_CLOUD_PROJECT, GEMINI_LOCATION)
    return model


def clear_model_cache() -> None:
    get_gemini_model.cache_clear()
