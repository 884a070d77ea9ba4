"""Configuration settings for the aid room server."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

_package_dir = Path(__file__).resolve().parent


def _optional_int(name: str) -> Optional[int]:
    value = os.getenv(name, "").strip()
    return int(value) if value else None


@dataclass
class TTSConfig:
    language_code: str = os.getenv("AID_TTS_LANGUAGE", "en-GB")
    voice: str = os.getenv("AID_TTS_VOICE", "en-GB-Standard-B")
    sample_rate: int = int(os.getenv("AID_TTS_SAMPLE_RATE", "24000"))
    audio_dir: str = os.getenv("AID_AUDIO_DIR", "audio")
    # newest speech files kept on disk per process, 0 keeps everything
    audio_keep: int = int(os.getenv("AID_AUDIO_KEEP", "200"))
# You select voice from https://docs.cloud.google.com/text-to-speech/docs/list-voices-and-types


@dataclass
class EngineConfig:
    grammar_path: str = os.getenv("AID_GRAMMAR_PATH", str(_package_dir / "data" / "grammar.json"))
    seed: Optional[int] = _optional_int("AID_GRAMMAR_SEED")


@dataclass
class ServerConfig:
    client_dir: str = os.getenv("AID_CLIENT_DIR", "client/dist")
    port: int = int(os.getenv("PORT", "3000"))


@dataclass
class Settings:
    tts: TTSConfig = None
    engine: EngineConfig = None
    server: ServerConfig = None

    def __post_init__(self):
        if self.tts is None:
            self.tts = TTSConfig()
        if self.engine is None:
            self.engine = EngineConfig()
        if self.server is None:
            self.server = ServerConfig()


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
