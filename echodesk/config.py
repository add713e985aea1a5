"""Application configuration: defaults merged with ~/.echo/config.toml."""

from __future__ import annotations

import dataclasses
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

_U64_MAX = 2**64 - 1
_U32_MAX = 2**32 - 1
_MIN_SUMMARY_INTERVAL_SEC = 15


def _home() -> str:
    return os.environ.get("HOME", ".")


@dataclass
class EchoConfig:
    mic_device: str = ":1"
    hotkey: str = "cmd+shift+space"
    model_endpoint: str = "http://localhost:11434"
    # Deprecated runtime toggle, kept so older config files still load.
    voice_enabled: bool = True
    voice_summary_loop_enabled: bool = False
    voice_summary_loop_interval_sec: int = 120
    wake_word_model_path: str = field(
        default_factory=lambda: f"{_home()}/.echo/wake_words/echo.rpw"
    )
    wake_word_phrase: str = "echo"
    wake_word_sensitivity: float = 0.5
    asr_backend: str = "sidecar"
    asr_sidecar_path: str = "whisper-cli"
    asr_model_path: str = field(
        default_factory=lambda: f"{_home()}/.echo/models/ggml-tiny.en.bin"
    )
    asr_endpoint: str = "http://localhost:8080/inference"
    asr_language: str = "en"
    asr_timeout_ms: int = 15_000
    audio_sample_rate: int = 16_000
    audio_pre_roll_ms: int = 500
    audio_max_record_ms: int = 8_000

    @classmethod
    def default(cls) -> "EchoConfig":
        """Return the built-in defaults, with paths under $HOME."""
        return cls()


_FIELD_KINDS = {
    "mic_device": "str",
    "hotkey": "str",
    "model_endpoint": "str",
    "voice_enabled": "bool",
    "voice_summary_loop_enabled": "bool",
    "voice_summary_loop_interval_sec": "u64",
    "wake_word_model_path": "str",
    "wake_word_phrase": "str",
    "wake_word_sensitivity": "float",
    "asr_backend": "str",
    "asr_sidecar_path": "str",
    "asr_model_path": "str",
    "asr_endpoint": "str",
    "asr_language": "str",
    "asr_timeout_ms": "u64",
    "audio_sample_rate": "u32",
    "audio_pre_roll_ms": "u64",
    "audio_max_record_ms": "u64",
}


def _coerce(name: str, kind: str, value: Any) -> Any:
    is_int = isinstance(value, int) and not isinstance(value, bool)
    if kind == "str" and isinstance(value, str):
        return value
    if kind == "bool" and isinstance(value, bool):
        return value
    if kind == "u64" and is_int and 0 <= value <= _U64_MAX:
        return value
    if kind == "u32" and is_int and 0 <= value <= _U32_MAX:
        return value
    if kind == "float" and (is_int or isinstance(value, float)):
        return float(value)
    raise ValueError(f"invalid value for `{name}`: expected {kind}, found {value!r}")


def user_config_path() -> Path | None:
    """Location of the user's config file, or None if no home is known."""
    home = os.environ.get("HOME")
    if home is None:
        try:
            return Path.home() / ".echo" / "config.toml"
        except RuntimeError:
            return None
    return Path(home) / ".echo" / "config.toml"


def load_config() -> EchoConfig:
    """Load defaults and overlay any values set in the user's config file.

    Raises ValueError (including tomllib.TOMLDecodeError) on malformed files.
    """
    config = EchoConfig.default()
    path = user_config_path()
    if path is None or not path.exists():
        return config

    with path.open("rb") as handle:
        data = tomllib.load(handle)

    updates = {
        name: _coerce(name, kind, data[name])
        for name, kind in _FIELD_KINDS.items()
        if name in data
    }
    if "voice_summary_loop_interval_sec" in updates:
        updates["voice_summary_loop_interval_sec"] = max(
            updates["voice_summary_loop_interval_sec"], _MIN_SUMMARY_INTERVAL_SEC
        )
    return dataclasses.replace(config, **updates)