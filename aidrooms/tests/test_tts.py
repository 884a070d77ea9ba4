"""Speech synthesis and duration probing."""
from types import SimpleNamespace

import numpy as np
import pytest
import soundfile as sf

from aidrooms.errors import DurationProbeError, SynthesisError
from aidrooms.service import tts as tts_module
from aidrooms.service.duration import DurationProbe
from aidrooms.service.tts import SpeechSynthesizer


class FakeTTSClient:
    requests = []
    fail = False

    def synthesize_speech(self, request):
        if self.fail:
            raise RuntimeError("quota exceeded")
        FakeTTSClient.requests.append(request)
        return SimpleNamespace(audio_content=b"RIFF-fake-wav")


@pytest.fixture
def fake_client(monkeypatch):
    FakeTTSClient.requests = []
    FakeTTSClient.fail = False
    monkeypatch.setattr(tts_module.texttospeech, "TextToSpeechClient", FakeTTSClient)
    return FakeTTSClient


@pytest.mark.asyncio
async def test_synthesize_writes_artifact(tmp_path, fake_client):
    synthesizer = SpeechSynthesizer(audio_dir=str(tmp_path / "audio"))

    artifact = await synthesizer.synthesize("Hello room.", pitch=-5, rate=0.9, prefix="R1")

    assert artifact.filename == f"R1-{artifact.artifact_id}.wav"
    assert artifact.path == tmp_path / "audio" / artifact.filename
    assert artifact.path.read_bytes() == b"RIFF-fake-wav"
    [request] = fake_client.requests
    assert request["input"].text == "Hello room."
    assert request["audio_config"].speaking_rate == pytest.approx(0.9)
    assert request["audio_config"].pitch == pytest.approx(-5)


@pytest.mark.asyncio
async def test_synthesize_keeps_parameters_in_service_range(tmp_path, fake_client):
    synthesizer = SpeechSynthesizer(audio_dir=str(tmp_path))

    await synthesizer.synthesize("Slow.", pitch=-30, rate=0.15)

    config = fake_client.requests[0]["audio_config"]
    assert config.speaking_rate == pytest.approx(0.25)
    assert config.pitch == pytest.approx(-20)


@pytest.mark.asyncio
async def test_synthesize_wraps_client_errors(tmp_path, fake_client):
    fake_client.fail = True
    synthesizer = SpeechSynthesizer(audio_dir=str(tmp_path))

    with pytest.raises(SynthesisError, match="quota exceeded"):
        await synthesizer.synthesize("Hi.", pitch=0, rate=1)


@pytest.mark.asyncio
async def test_probe_measures_wav_duration(tmp_path):
    path = tmp_path / "half.wav"
    sf.write(str(path), np.zeros(8000, dtype="int16"), 16000)

    assert await DurationProbe().measure(path) == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_probe_missing_file(tmp_path):
    with pytest.raises(DurationProbeError):
        await DurationProbe().measure(tmp_path / "missing.wav")


@pytest.mark.asyncio
async def test_synthesize_removes_oldest_files_beyond_keep(tmp_path, fake_client):
    synthesizer = SpeechSynthesizer(audio_dir=str(tmp_path), keep=2)

    first = await synthesizer.synthesize("One.", pitch=0, rate=1)
    second = await synthesizer.synthesize("Two.", pitch=0, rate=1)
    third = await synthesizer.synthesize("Three.", pitch=0, rate=1)

    assert not first.path.exists()
    assert second.path.exists() and third.path.exists()
    assert sorted(p.name for p in tmp_path.iterdir()) == sorted([second.filename, third.filename])


@pytest.mark.asyncio
async def test_synthesize_keep_zero_retains_everything(tmp_path, fake_client):
    synthesizer = SpeechSynthesizer(audio_dir=str(tmp_path), keep=0)

    for text in ("One.", "Two.", "Three."):
        await synthesizer.synthesize(text, pitch=0, rate=1)

    assert len(list(tmp_path.iterdir())) == 3
