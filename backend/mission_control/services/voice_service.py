"""
Voice service: provider fallback for speech-to-text and text-to-speech,
cost estimates, and storage of generated audio.
"""

import asyncio
import os
import uuid
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import aiofiles

from ..config import settings
from ..exceptions import NotFoundError, ProviderError
from ..logger import get_logger
from ..schemas.voice import STTResult, SynthesizeResponse, TTSResult, Voice, VoiceCostEstimate
from .stt_service import STTProviderFactory
from .tts_service import ElevenLabsTTSProvider, TTSProviderFactory

logger = get_logger(__name__)

# USD per minute of audio
STT_COST_PER_MINUTE = {
    "whisper": 0.006,
    "deepgram": 0.0043,
    "assemblyai": 0.015,
}

# USD per 1000 characters
TTS_COST_PER_1K_CHARS = {
    "openai": 0.015,
    "elevenlabs": 0.18,
    "playht": 0.05,
}

# OpenAI voice names and their closest match on the other providers
VOICE_MAPPINGS = {
    "alloy": {"openai": "alloy", "elevenlabs": "Rachel", "playht": "jennifer"},
    "echo": {"openai": "echo", "elevenlabs": "Domi", "playht": "michael"},
    "fable": {"openai": "fable", "elevenlabs": "Bella", "playht": "christopher"},
    "onyx": {"openai": "onyx", "elevenlabs": "Antoni", "playht": "james"},
    "nova": {"openai": "nova", "elevenlabs": "Elli", "playht": "sophia"},
    "shimmer": {"openai": "shimmer", "elevenlabs": "Premade/Alice", "playht": "emma"},
}


def map_voice(voice: str, provider: str) -> str:
    """Translate a generic voice name to ``provider``'s equivalent."""
    if "/" in voice or len(voice) > 20:
        return voice  # already provider specific
    mapping = VOICE_MAPPINGS.get(voice.lower())
    if mapping and provider in mapping:
        return mapping[provider]
    return voice


def provider_order(primary: str, available: Sequence[str], fallback: bool) -> List[str]:
    """``primary`` first, then the remaining available providers when falling back."""
    if not fallback:
        return [primary] if primary in available else []
    order = [primary] + [p for p in available if p != primary]
    return [p for p in order if p in available]


class VoiceService:
    """Wraps the provider factories with retry, fallback and cost tracking."""

    def __init__(
        self,
        stt: Optional[STTProviderFactory] = None,
        tts: Optional[TTSProviderFactory] = None,
        default_stt_provider: str = "whisper",
        default_tts_provider: str = "openai",
        default_voice: str = "alloy",
        fallback_enabled: bool = True,
        retry_attempts: int = 2,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.stt = stt or STTProviderFactory.from_settings()
        self.tts = tts or TTSProviderFactory.from_settings()
        self.default_stt_provider = default_stt_provider
        self.default_tts_provider = default_tts_provider
        self.default_voice = default_voice
        self.fallback_enabled = fallback_enabled
        self.retry_attempts = max(1, retry_attempts)
        self._sleep = sleep

    async def _with_fallback(self, kind: str, primary: str, available: List[str], call):
        providers = provider_order(primary, available, self.fallback_enabled)
        if not providers:
            raise NotFoundError(f"{kind} provider '{primary}' not found or not configured")

        last_error: Optional[Exception] = None
        for name in providers:
            for attempt in range(self.retry_attempts):
                try:
                    return name, await call(name)
                except ProviderError as e:
                    last_error = e
                    logger.warning("%s provider %s failed (attempt %d): %s", kind, name, attempt + 1, e)
                    if attempt < self.retry_attempts - 1:
                        await self._sleep((2 ** attempt) * 0.5)

        raise ProviderError(primary, f"{kind} failed after all attempts: {last_error}")

    async def transcribe(
        self, audio: bytes, provider: Optional[str] = None, language: Optional[str] = None
    ) -> Tuple[str, STTResult]:
        """Returns the provider that answered and its result."""

        async def call(name: str) -> STTResult:
            return await self.stt.get_provider(name).transcribe(audio, language)

        name, result = await self._with_fallback(
            "STT", provider or self.default_stt_provider, self.stt.get_available_providers(), call
        )
        if result.duration:
            cost = self.estimate_stt_cost(result.duration / 1000, name).estimated_cost
            logger.debug("STT cost tracked (provider=%s, cost=%.4f)", name, cost)
        return name, result

    async def synthesize(
        self,
        text: str,
        provider: Optional[str] = None,
        voice: Optional[str] = None,
        speed: float = 1.0,
        output_format: Optional[str] = None,
    ) -> Tuple[str, TTSResult]:
        voice = voice or self.default_voice

        async def call(name: str) -> TTSResult:
            return await self.tts.get_provider(name).synthesize(
                text, map_voice(voice, name), speed=speed, output_format=output_format
            )

        return await self._with_fallback(
            "TTS", provider or self.default_tts_provider, self.tts.get_available_providers(), call
        )

    async def synthesize_to_file(
        self,
        text: str,
        user_id: str,
        provider: Optional[str] = None,
        voice: Optional[str] = None,
        speed: float = 1.0,
        output_format: Optional[str] = None,
    ) -> SynthesizeResponse:
        """Synthesize and store the audio under ``UPLOAD_DIR/<user_id>/``."""
        name, result = await self.synthesize(text, provider, voice, speed, output_format)

        user_dir = os.path.join(settings.UPLOAD_DIR, str(user_id))
        os.makedirs(user_dir, exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        extension = result.format.split("_")[0]
        filename = f"tts_{timestamp}_{uuid.uuid4().hex[:8]}.{extension}"

        async with aiofiles.open(os.path.join(user_dir, filename), "wb") as f:
            await f.write(result.audio)

        return SynthesizeResponse(
            url=f"/api/voice/audio/{user_id}/{filename}",
            provider=name,
            voice=voice or self.default_voice,
            format=result.format,
            duration=result.duration,
        )

    @staticmethod
    def get_audio_path(user_id: str, filename: str) -> Optional[Path]:
        """Stored audio file, or None when missing or outside the upload directory."""
        root = Path(settings.UPLOAD_DIR).resolve()
        path = (root / str(user_id) / filename).resolve()
        if root not in path.parents or not path.is_file():
            return None
        return path

    async def get_voices(self, provider: Optional[str] = None) -> List[Voice]:
        return await self.tts.get_provider(provider or self.default_tts_provider).get_voices()

    async def get_all_voices(self) -> Dict[str, List[Voice]]:
        voices: Dict[str, List[Voice]] = {}
        for name in self.tts.get_available_providers():
            try:
                voices[name] = await self.tts.get_provider(name).get_voices()
            except ProviderError as e:
                logger.error("Failed to get voices from %s: %s", name, e)
                voices[name] = []
        return voices

    async def clone_voice(self, name: str, description: str, samples: Sequence[bytes]) -> Voice:
        provider = self.tts.get_provider("elevenlabs")
        if not isinstance(provider, ElevenLabsTTSProvider):
            raise NotFoundError("Voice cloning requires the ElevenLabs provider")
        return await provider.clone_voice(name, description, samples)

    def estimate_stt_cost(self, audio_duration_seconds: float, provider: Optional[str] = None) -> VoiceCostEstimate:
        provider = provider or self.default_stt_provider
        per_minute = STT_COST_PER_MINUTE.get(provider, 0.01)
        return VoiceCostEstimate(
            provider=provider,
            estimated_cost=round(audio_duration_seconds / 60 * per_minute, 4),
            audio_duration_seconds=audio_duration_seconds,
        )

    def estimate_tts_cost(self, text: str, provider: Optional[str] = None) -> VoiceCostEstimate:
        provider = provider or self.default_tts_provider
        per_1k = TTS_COST_PER_1K_CHARS.get(provider, 0.05)
        return VoiceCostEstimate(
            provider=provider,
            estimated_cost=round(len(text) / 1000 * per_1k, 4),
            character_count=len(text),
        )
