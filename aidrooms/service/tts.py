"""Google Cloud speech synthesis for story segments."""
from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Deque, Optional

from google.cloud import texttospeech

from aidrooms.config import get_settings
from aidrooms.errors import SynthesisError

logger = logging.getLogger(__name__)

# Google accepts speaking_rate in [0.25, 4.0] and pitch in [-20, 20] semitones.
MIN_SPEAKING_RATE = 0.25
MAX_SPEAKING_RATE = 4.0
MIN_PITCH = -20.0
MAX_PITCH = 20.0


@dataclass
class SpeechArtifact:
    artifact_id: str
    filename: str
    path: Path


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class SpeechSynthesizer:
    def __init__(self, audio_dir: Optional[str] = None, keep: Optional[int] = None) -> None:
        cfg = get_settings().tts
        self.audio_dir = Path(audio_dir or cfg.audio_dir)
        self.keep = cfg.audio_keep if keep is None else keep
        self._written: Deque[Path] = deque()
        self.sample_rate = cfg.sample_rate
        self.voice = texttospeech.VoiceSelectionParams(
            language_code=cfg.language_code,
            name=cfg.voice,
        )
        self._client: Optional[texttospeech.TextToSpeechClient] = None

    @property
    def client(self) -> texttospeech.TextToSpeechClient:
        # created on first use so the app can boot without credentials
        if self._client is None:
            self._client = texttospeech.TextToSpeechClient()
        return self._client

    async def synthesize(self, text: str, *, pitch: float, rate: float, prefix: str = "speech") -> SpeechArtifact:
        artifact_id = uuid.uuid4().hex
        filename = f"{prefix}-{artifact_id}.wav"
        path = self.audio_dir / filename
        audio_cfg = texttospeech.AudioConfig(
            audio_encoding=texttospeech.AudioEncoding.LINEAR16,
            sample_rate_hertz=self.sample_rate,
            speaking_rate=_clamp(rate, MIN_SPEAKING_RATE, MAX_SPEAKING_RATE),
            pitch=_clamp(pitch, MIN_PITCH, MAX_PITCH),
        )
        try:
            await asyncio.to_thread(self._synthesize_to_file, text, audio_cfg, path)
        except Exception as exc:
            raise SynthesisError(f"speech synthesis failed: {exc}") from exc
        logger.info("synthesized %s (%d chars)", filename, len(text))
        self._retain(path)
        return SpeechArtifact(artifact_id=artifact_id, filename=filename, path=path)

    def _synthesize_to_file(self, text: str, audio_cfg: texttospeech.AudioConfig, path: Path) -> None:
        response = self.client.synthesize_speech(
            request={
                "input": texttospeech.SynthesisInput(text=text),
                "voice": self.voice,
                "audio_config": audio_cfg,
            },
        )
        path.parent.mkdir(parents=True, exist_ok=True)
        # LINEAR16 responses carry a WAV header
        path.write_bytes(response.audio_content)

    def _retain(self, path: Path) -> None:
        self._written.append(path)
        if self.keep <= 0:
            return
        while len(self._written) > self.keep:
            stale = self._written.popleft()
            try:
                stale.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("could not remove old speech file %s: %s", stale, exc)
