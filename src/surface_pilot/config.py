# config.py
# Runtime settings. Environment first (from_env loads a local .env), then
# built-in defaults. No logic beyond parsing lives here.

import logging
import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

LOGGER = logging.getLogger(__name__)

DEFAULT_MODEL = "anthropic/claude-3.5-haiku"
DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"


def _to_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _to_positive_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        parsed = float(value.strip())
    except ValueError:
        LOGGER.warning("ignoring malformed number %r, using %s", value, default)
        return default
    return parsed if parsed > 0 else default


def _to_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseModel):
    """Everything the entry point needs to wire an agent together."""

    model: str = DEFAULT_MODEL
    fallback_models: list[str] = Field(default_factory=list)
    base_url: str = DEFAULT_BASE_URL
    api_key: str | None = None
    policy_file: str | None = None
    oracle_timeout: float = Field(default=60.0, gt=0)
    perception_timeout: float = Field(default=15.0, gt=0)
    live_policy: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        return cls(
            model=os.getenv("SURFACE_PILOT_MODEL") or DEFAULT_MODEL,
            fallback_models=_to_list(os.getenv("SURFACE_PILOT_FALLBACK_MODELS")),
            base_url=os.getenv("SURFACE_PILOT_BASE_URL") or DEFAULT_BASE_URL,
            api_key=(
                os.getenv("SURFACE_PILOT_API_KEY")
                or os.getenv("OPENROUTER_API_KEY")
                or os.getenv("OPENAI_API_KEY")
            ),
            policy_file=os.getenv("SURFACE_PILOT_POLICY_FILE") or None,
            oracle_timeout=_to_positive_float(os.getenv("SURFACE_PILOT_ORACLE_TIMEOUT"), 60.0),
            perception_timeout=_to_positive_float(
                os.getenv("SURFACE_PILOT_PERCEPTION_TIMEOUT"), 15.0
            ),
            live_policy=_to_bool(os.getenv("SURFACE_PILOT_LIVE_POLICY")),
            log_level=(os.getenv("SURFACE_PILOT_LOG_LEVEL") or "INFO").upper(),
        )
