"""
Tests for the STT/TTS adapters and the voice service fallback logic.
"""

import asyncio

import pytest

from mission_control.config import settings
from mission_control.exceptions import NotFoundError, ProviderError
from mission_control.schemas.voice import STTResult
from mission_control.services.stt_service import (
    AssemblyAISTTProvider,
    DeepgramSTTProvider,
    STTProvider,
    STTProviderFactory,
)
from mission_control.services.tts_service import (
    ElevenLabsTTSProvider,
    PlayHTTTSProvider,
    TTSProviderFactory,
)
from mission_control.services.voice_service import VoiceService, map_voice, provider_order

from conftest import FakeResponse, FakeSession, RecordingSleep


class ScriptedSTT(STTProvider):
    """Fails ``failures`` times, then returns ``text``."""

    def __init__(self, name, text="hello", failures=0):
        self.name = name
        self.label = name.title()
        self.text = text
        self.failures = failures
        self.calls = 0

    async def _transcribe(self, audio, language):
        self.calls += 1
        if self.calls <= self.failures:
            raise ProviderError(self.name, "temporarily unavailable")
        return STTResult(text=self.text, language=language)


# Speech-to-text adapters

async def test_deepgram_parses_words():
    session = FakeSession([FakeResponse(200, {
        "results": {"channels": [{"alternatives": [{
            "transcript": "hi there",
            "confidence": 0.93,
            "words": [
                {"word": "hi", "start": 0.0, "end": 0.2, "confidence": 0.9},
                {"word": "there", "start": 0.2, "end": 0.6, "confidence": 0.95},
            ],
        }]}]},
    })])

    result = await DeepgramSTTProvider("dg-key", session=session).transcribe(b"audio", "en")

    assert result.text == "hi there"
    assert result.confidence == 0.93
    assert result.language == "en"
    assert [w.word for w in result.words] == ["hi", "there"]
    assert result.duration is not None
    request = session.requests[0]
    assert request["headers"]["Authorization"] == "Token dg-key"
    assert request["data"] == b"audio"


async def test_deepgram_http_error_becomes_provider_error():
    session = FakeSession([FakeResponse(401, reason="Unauthorized")])
    with pytest.raises(ProviderError) as exc_info:
        await DeepgramSTTProvider("bad", session=session).transcribe(b"audio")
    assert exc_info.value.provider == "deepgram"
    assert "Unauthorized" in str(exc_info.value)


async def test_deepgram_without_alternatives():
    session = FakeSession([FakeResponse(200, {"results": {"channels": [{"alternatives": []}]}})])
    with pytest.raises(ProviderError, match="No transcription result"):
        await DeepgramSTTProvider("k", session=session).transcribe(b"audio")


async def test_assemblyai_polls_until_complete():
    sleep = RecordingSleep()
    session = FakeSession([
        FakeResponse(200, {"upload_url": "https://cdn.assemblyai.com/upload/1"}),
        FakeResponse(200, {"id": "tr-1"}),
        FakeResponse(200, {"status": "queued"}),
        FakeResponse(200, {"status": "processing"}),
        FakeResponse(200, {
            "status": "completed",
            "text": "good morning",
            "confidence": 0.88,
            "language_code": "en_us",
            "words": [{"text": "good", "start": 0, "end": 300, "confidence": 0.9}],
        }),
    ])
    provider = AssemblyAISTTProvider("aai-key", session=session, poll_interval=1.5, max_polls=5, sleep=sleep)

    result = await provider.transcribe(b"audio", "en_us")

    assert result.text == "good morning"
    assert result.words[0].end == 0.3
    assert sleep.delays == [1.5, 1.5]
    assert session.requests[1]["json"]["audio_url"] == "https://cdn.assemblyai.com/upload/1"
    assert session.requests[2]["url"].endswith("/transcript/tr-1")


async def test_assemblyai_reports_transcript_errors():
    session = FakeSession([
        FakeResponse(200, {"upload_url": "u"}),
        FakeResponse(200, {"id": "tr-2"}),
        FakeResponse(200, {"status": "error", "error": "audio too short"}),
    ])
    provider = AssemblyAISTTProvider("k", session=session, sleep=RecordingSleep())
    with pytest.raises(ProviderError, match="audio too short"):
        await provider.transcribe(b"audio")


async def test_assemblyai_gives_up_after_max_polls():
    sleep = RecordingSleep()
    session = FakeSession([
        FakeResponse(200, {"upload_url": "u"}),
        FakeResponse(200, {"id": "tr-3"}),
    ] + [FakeResponse(200, {"status": "processing"})] * 3)
    provider = AssemblyAISTTProvider("k", session=session, poll_interval=1, max_polls=3, sleep=sleep)

    with pytest.raises(ProviderError, match="timeout"):
        await provider.transcribe(b"audio")
    assert len(sleep.delays) == 3


async def test_assemblyai_poll_http_error_fails_fast():
    sleep = RecordingSleep()
    session = FakeSession([
        FakeResponse(200, {"upload_url": "u"}),
        FakeResponse(200, {"id": "tr-4"}),
        FakeResponse(401, {"error": "Invalid API key"}, reason="Unauthorized"),
    ])
    provider = AssemblyAISTTProvider("k", session=session, max_polls=10, sleep=sleep)

    with pytest.raises(ProviderError, match="Unauthorized"):
        await provider.transcribe(b"audio")
    assert sleep.delays == []
    assert len(session.requests) == 3


async def test_network_errors_are_wrapped():
    session = FakeSession([asyncio.TimeoutError()])
    with pytest.raises(ProviderError):
        await DeepgramSTTProvider("k", session=session).transcribe(b"audio")


def test_factory_unknown_provider():
    factory = STTProviderFactory({"deepgram": DeepgramSTTProvider("k")})
    assert factory.get_available_providers() == ["deepgram"]
    assert factory.has_provider("deepgram")
    with pytest.raises(NotFoundError):
        factory.get_provider("whisper")


# Text-to-speech adapters

async def test_elevenlabs_synthesize():
    session = FakeSession([FakeResponse(200, body=b"mp3-bytes")])

    result = await ElevenLabsTTSProvider("el-key", session=session).synthesize("Hello", stability=0.9)

    assert result.audio == b"mp3-bytes"
    assert result.format == "mp3_44100_128"
    request = session.requests[0]
    assert request["url"].endswith("/text-to-speech/Rachel")
    assert request["json"]["voice_settings"]["stability"] == 0.9
    assert request["headers"]["xi-api-key"] == "el-key"


async def test_elevenlabs_error_includes_body():
    session = FakeSession([FakeResponse(422, body=b"text too long", reason="Unprocessable Entity")])
    with pytest.raises(ProviderError, match="text too long"):
        await ElevenLabsTTSProvider("k", session=session).synthesize("x")


async def test_elevenlabs_voices():
    session = FakeSession([FakeResponse(200, {"voices": [
        {"voice_id": "v1", "name": "Rachel", "labels": {"gender": "female", "accent": "american"}},
    ]})])
    voices = await ElevenLabsTTSProvider("k", session=session).get_voices()
    assert voices[0].id == "v1"
    assert voices[0].gender == "female"


async def test_elevenlabs_clone_voice():
    session = FakeSession([FakeResponse(200, {"voice_id": "cloned-1"})])
    voice = await ElevenLabsTTSProvider("k", session=session).clone_voice("Me", "my voice", [b"a", b"b"])
    assert voice.id == "cloned-1"
    assert voice.name == "Me"
    assert session.requests[0]["url"].endswith("/voices/add")


async def test_playht_synthesize_and_voices():
    session = FakeSession([
        FakeResponse(200, body=b"wav"),
        FakeResponse(200, [{"id": "s3://voice/1", "name": "Jennifer", "gender": "female"}]),
    ])
    provider = PlayHTTTSProvider("ph-key", "ph-user", session=session)

    result = await provider.synthesize("Hi", voice="jennifer", speed=1.25, output_format="wav")
    voices = await provider.get_voices()

    assert result.audio == b"wav"
    assert result.format == "wav"
    assert session.requests[0]["json"] == {"text": "Hi", "voice": "jennifer", "output_format": "wav", "speed": 1.25}
    assert session.requests[0]["headers"]["X-USER-ID"] == "ph-user"
    assert voices[0].name == "Jennifer"


# Voice service

def test_map_voice():
    assert map_voice("alloy", "elevenlabs") == "Rachel"
    assert map_voice("Nova", "playht") == "sophia"
    assert map_voice("custom-voice", "openai") == "custom-voice"
    assert map_voice("s3://voices/abc", "playht") == "s3://voices/abc"


def test_provider_order():
    assert provider_order("b", ["a", "b", "c"], True) == ["b", "a", "c"]
    assert provider_order("b", ["a", "b"], False) == ["b"]
    assert provider_order("z", ["a"], False) == []
    assert provider_order("z", ["a"], True) == ["a"]


async def test_transcribe_retries_then_succeeds():
    sleep = RecordingSleep()
    flaky = ScriptedSTT("whisper", failures=1)
    service = VoiceService(stt=STTProviderFactory({"whisper": flaky}), tts=TTSProviderFactory(), sleep=sleep)

    provider, result = await service.transcribe(b"audio")

    assert provider == "whisper"
    assert result.text == "hello"
    assert flaky.calls == 2
    assert sleep.delays == [0.5]


async def test_transcribe_falls_back_to_next_provider():
    broken = ScriptedSTT("whisper", failures=10)
    backup = ScriptedSTT("deepgram", text="from backup")
    service = VoiceService(
        stt=STTProviderFactory({"whisper": broken, "deepgram": backup}),
        tts=TTSProviderFactory(),
        sleep=RecordingSleep(),
    )

    provider, result = await service.transcribe(b"audio")

    assert provider == "deepgram"
    assert result.text == "from backup"
    assert broken.calls == 2


async def test_transcribe_without_fallback_raises():
    service = VoiceService(
        stt=STTProviderFactory({"whisper": ScriptedSTT("whisper", failures=10), "deepgram": ScriptedSTT("deepgram")}),
        tts=TTSProviderFactory(),
        fallback_enabled=False,
        sleep=RecordingSleep(),
    )
    with pytest.raises(ProviderError, match="STT failed after all attempts"):
        await service.transcribe(b"audio")


async def test_unconfigured_provider_is_not_found():
    service = VoiceService(stt=STTProviderFactory(), tts=TTSProviderFactory(), sleep=RecordingSleep())
    with pytest.raises(NotFoundError):
        await service.transcribe(b"audio", provider="whisper")


def test_cost_estimates():
    service = VoiceService(stt=STTProviderFactory(), tts=TTSProviderFactory())

    stt = service.estimate_stt_cost(120, "deepgram")
    assert stt.estimated_cost == pytest.approx(0.0086)
    assert stt.audio_duration_seconds == 120

    tts = service.estimate_tts_cost("x" * 2000, "elevenlabs")
    assert tts.estimated_cost == pytest.approx(0.36)
    assert tts.character_count == 2000

    assert service.estimate_tts_cost("x" * 1000, "unknown").estimated_cost == pytest.approx(0.05)


async def test_synthesize_to_file_and_serve(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path))
    session = FakeSession([FakeResponse(200, body=b"audio-bytes")])
    service = VoiceService(
        stt=STTProviderFactory(),
        tts=TTSProviderFactory({"elevenlabs": ElevenLabsTTSProvider("k", session=session)}),
        default_tts_provider="elevenlabs",
    )

    response = await service.synthesize_to_file("Hello", user_id="alice", voice="nova")

    assert response.provider == "elevenlabs"
    assert response.url.startswith("/api/voice/audio/alice/tts_")
    assert response.url.endswith(".mp3")
    assert session.requests[0]["url"].endswith("/text-to-speech/Elli")

    filename = response.url.rsplit("/", 1)[1]
    path = VoiceService.get_audio_path("alice", filename)
    assert path is not None
    assert path.read_bytes() == b"audio-bytes"


def test_get_audio_path_rejects_traversal(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path / "uploads"))
    (tmp_path / "secret.txt").write_text("nope")
    (tmp_path / "uploads" / "alice").mkdir(parents=True)

    assert VoiceService.get_audio_path("alice", "../../secret.txt") is None
    assert VoiceService.get_audio_path("alice", "missing.mp3") is None


async def test_clone_voice_requires_elevenlabs():
    service = VoiceService(stt=STTProviderFactory(), tts=TTSProviderFactory())
    with pytest.raises(NotFoundError):
        await service.clone_voice("Me", "", [b"a"])
