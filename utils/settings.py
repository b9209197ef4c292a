"""Environment-driven configuration for the intake service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_REFERER_URL = "https://finance-bot.app"
DEFAULT_MODEL = "google/gemini-2.5-flash-preview"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def _require(env: Mapping[str, str], name: str) -> str:
	value = (env.get(name) or "").strip()
	if not value:
		raise RuntimeError(f"{name} environment variable is not set")
	return value


def _int(env: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
	raw = (env.get(name) or "").strip()
	if not raw:
		return default
	try:
		value = int(raw)
	except ValueError as exc:
		raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc
	if value < minimum:
		raise RuntimeError(f"{name} must be at least {minimum}, got {value}")
	return value


def _float(env: Mapping[str, str], name: str, default: float) -> float:
	raw = (env.get(name) or "").strip()
	if not raw:
		return default
	try:
		value = float(raw)
	except ValueError as exc:
		raise RuntimeError(f"{name} must be a number, got {raw!r}") from exc
	if value <= 0:
		raise RuntimeError(f"{name} must be positive, got {value}")
	return value


def _bool(env: Mapping[str, str], name: str, default: bool) -> bool:
	raw = env.get(name)
	if raw is None:
		return default
	value = raw.strip().lower()
	if value in _TRUE_VALUES:
		return True
	if value in _FALSE_VALUES:
		return False
	raise RuntimeError(f"{name} must be a boolean, got {raw!r}")


@dataclass(frozen=True)
class Settings:
	openrouter_api_key: str
	firefly_api_url: str
	firefly_access_token: str
	openrouter_base_url: str = DEFAULT_OPENROUTER_BASE_URL
	openrouter_model: str = DEFAULT_MODEL
	openrouter_referer_url: str = DEFAULT_REFERER_URL
	prompt_template_file: Optional[str] = None
	transaction_min_tags: int = 0
	media_group_timeout_ms: int = 500
	session_max_age_hours: float = 24
	session_cleanup_interval_minutes: float = 15
	max_processing_attempts: int = 3
	allow_empty_finalize: bool = False
	log_level: str = "INFO"

	@classmethod
	def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
		"""Build settings from `env` (defaults to `os.environ`).

		Raises:
			RuntimeError: If a required variable is missing or a value is malformed.
		"""
		env = os.environ if env is None else env
		return cls(
			openrouter_api_key=_require(env, "OPENROUTER_API_KEY"),
			firefly_api_url=_require(env, "FIREFLY_API_URL"),
			firefly_access_token=_require(env, "FIREFLY_ACCESS_TOKEN"),
			openrouter_base_url=(env.get("OPENROUTER_BASE_URL") or DEFAULT_OPENROUTER_BASE_URL).strip(),
			openrouter_model=(env.get("OPENROUTER_MODEL") or DEFAULT_MODEL).strip(),
			openrouter_referer_url=(env.get("OPENROUTER_REFERER_URL") or DEFAULT_REFERER_URL).strip(),
			prompt_template_file=(env.get("PROMPT_TEMPLATE_FILE") or "").strip() or None,
			transaction_min_tags=_int(env, "TRANSACTION_MIN_TAGS", 0),
			media_group_timeout_ms=_int(env, "MEDIA_GROUP_TIMEOUT_MS", 500, minimum=1),
			session_max_age_hours=_float(env, "SESSION_MAX_AGE_HOURS", 24),
			session_cleanup_interval_minutes=_float(env, "SESSION_CLEANUP_INTERVAL_MINUTES", 15),
			max_processing_attempts=_int(env, "MAX_PROCESSING_ATTEMPTS", 3, minimum=1),
			allow_empty_finalize=_bool(env, "ALLOW_EMPTY_FINALIZE", False),
			log_level=(env.get("LOG_LEVEL") or "INFO").strip().upper(),
		)
