"""
Runtime configuration for the realtime interview client.

Values come from the environment (optionally a `.env` file beside the
`python/` directory) and are validated strictly at load time.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from dotenv import load_dotenv


_env_path = Path(__file__).parent.parent / ".env"

DEFAULT_TOKEN_URL = "http://127.0.0.1:3000/token"
DEFAULT_REALTIME_BASE_URL = "https://api.openai.com/v1/realtime"
DEFAULT_REALTIME_MODEL = "gpt-4o-realtime-preview-2024-12-17"
DEFAULT_DATA_CHANNEL_LABEL = "oai-events"


@dataclass(frozen=True)
class RealtimeConfig:
    """Settings for credential retrieval, negotiation and local media."""

    token_url: str = DEFAULT_TOKEN_URL
    realtime_base_url: str = DEFAULT_REALTIME_BASE_URL
    model: str = DEFAULT_REALTIME_MODEL
    data_channel_label: str = DEFAULT_DATA_CHANNEL_LABEL
    microphone_device: str = "default"
    microphone_format: str | None = "pulse"
    audio_output_path: Path | None = None
    http_timeout_seconds: float = 10.0
    channel_open_timeout_seconds: float = 15.0
    profile_path: str | None = None


def _required(env: Mapping[str, str], name: str, default: str) -> str:
    value = (env.get(name, default) or "").strip()
    if not value:
        raise RuntimeError(f"{name} resolved to empty value.")
    return value


def _positive_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number. Got: {raw}") from exc
    if value <= 0:
        raise RuntimeError(f"{name} must be greater than 0. Got: {value}.")
    return value


def load_realtime_config(env: Mapping[str, str] | None = None) -> RealtimeConfig:
    """Load runtime config from environment with strict validation."""
    if env is None:
        load_dotenv(_env_path)
        env = os.environ

    token_url = _required(env, "TOKEN_URL", DEFAULT_TOKEN_URL)
    if not token_url.startswith(("http://", "https://")):
        raise RuntimeError(f"TOKEN_URL must be an http(s) URL. Got: {token_url}")

    realtime_base_url = _required(env, "REALTIME_BASE_URL", DEFAULT_REALTIME_BASE_URL)
    if not realtime_base_url.startswith("https://"):
        raise RuntimeError(
            f"REALTIME_BASE_URL must be an https URL. Got: {realtime_base_url}"
        )

    microphone_format = (env.get("MICROPHONE_FORMAT", "pulse") or "").strip() or None

    audio_output_raw = (env.get("AUDIO_OUTPUT_PATH") or "").strip()
    audio_output_path = Path(audio_output_raw).expanduser() if audio_output_raw else None

    return RealtimeConfig(
        token_url=token_url,
        realtime_base_url=realtime_base_url.rstrip("/"),
        model=_required(env, "REALTIME_MODEL", DEFAULT_REALTIME_MODEL),
        data_channel_label=_required(env, "DATA_CHANNEL_LABEL", DEFAULT_DATA_CHANNEL_LABEL),
        microphone_device=_required(env, "MICROPHONE_DEVICE", "default"),
        microphone_format=microphone_format,
        audio_output_path=audio_output_path,
        http_timeout_seconds=_positive_float(env, "HTTP_TIMEOUT_SECONDS", 10.0),
        channel_open_timeout_seconds=_positive_float(
            env, "CHANNEL_OPEN_TIMEOUT_SECONDS", 15.0
        ),
        profile_path=(env.get("INTERVIEW_PROFILE_PATH") or "").strip() or None,
    )
