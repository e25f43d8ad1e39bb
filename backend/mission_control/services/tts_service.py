"""
Text-to-speech provider adapters: OpenAI, ElevenLabs and PlayHT.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional, Sequence

import aiohttp
import openai
from openai import AsyncOpenAI

from ..config import settings
from ..exceptions import NotFoundError, ProviderError
from ..logger import get_logger
from ..schemas.voice import TTSResult, Voice
from .http_session import open_session

logger = get_logger(__name__)

ELEVENLABS_BASE = "https://api.elevenlabs.io/v1"
PLAYHT_BASE = "https://api.play.ht/api/v2"

_VENDOR_ERRORS = (ProviderError, aiohttp.ClientError, asyncio.TimeoutError, openai.OpenAIError)


class TTSProvider:
    """Base adapter. Subclasses implement ``_synthesize`` and ``get_voices``."""

    name = ""
    label = ""
    default_voice = ""

    async def synthesize(
        self,
        text: str,
        voice: Optional[str] = None,
        speed: float = 1.0,
        output_format: Optional[str] = None,
        **options: Any,
    ) -> TTSResult:
        voice = voice or self.default_voice
        start_time = time.monotonic()
        try:
            audio, audio_format = await self._synthesize(text, voice, speed, output_format, options)
        except _VENDOR_ERRORS as e:
            logger.error("%s TTS synthesis failed: %s", self.label, e)
            raise ProviderError(self.name, f"{self.label} TTS synthesis failed: {e}") from e

        duration = (time.monotonic() - start_time) * 1000
        logger.info(
            "%s TTS synthesis completed (text_length=%d, voice=%s, audio_size=%d, duration_ms=%d)",
            self.label, len(text), voice, len(audio), duration,
        )
        return TTSResult(audio=audio, duration=duration, format=audio_format)

    async def _synthesize(self, text: str, voice: str, speed: float,
                          output_format: Optional[str], options: Dict[str, Any]):
        raise NotImplementedError

    async def get_voices(self) -> List[Voice]:
        raise NotImplementedError


class OpenAITTSProvider(TTSProvider):
    name = "openai"
    label = "OpenAI"
    default_voice = "alloy"

    VOICES = [
        Voice(id="alloy", name="Alloy", description="Neutral and balanced voice", gender="neutral", use_case="general"),
        Voice(id="echo", name="Echo", description="Male voice with clear pronunciation", gender="male", use_case="general"),
        Voice(id="fable", name="Fable", description="British male voice with expressive tone", gender="male",
              accent="british", use_case="storytelling"),
        Voice(id="onyx", name="Onyx", description="Deep male voice", gender="male", use_case="authoritative"),
        Voice(id="nova", name="Nova", description="Young female voice with energy", gender="female", age="young",
              use_case="friendly"),
        Voice(id="shimmer", name="Shimmer", description="Soft female voice", gender="female", use_case="gentle"),
    ]

    def __init__(self, api_key: str, client: Optional[AsyncOpenAI] = None):
        self.client = client or AsyncOpenAI(api_key=api_key)

    async def _synthesize(self, text, voice, speed, output_format, options):
        audio_format = output_format or "mp3"
        response = await self.client.audio.speech.create(
            model="tts-1-hd",
            voice=voice,
            input=text,
            speed=speed,
            response_format=audio_format,
        )
        return response.content, audio_format

    async def get_voices(self) -> List[Voice]:
        return list(self.VOICES)


class ElevenLabsTTSProvider(TTSProvider):
    name = "elevenlabs"
    label = "ElevenLabs"
    default_voice = "Rachel"

    def __init__(self, api_key: str, session: Optional[aiohttp.ClientSession] = None):
        self.api_key = api_key
        self.session = session

    async def _synthesize(self, text, voice, speed, output_format, options):
        audio_format = output_format or "mp3_44100_128"
        payload = {
            "text": text,
            "model_id": "eleven_turbo_v2",
            "voice_settings": {
                "stability": options.get("stability", 0.5),
                "similarity_boost": options.get("similarity_boost", 0.75),
                "style": options.get("style", 0.0),
                "use_speaker_boost": options.get("use_speaker_boost", True),
            },
            "output_format": audio_format,
        }
        async with open_session(self.session) as session:
            async with session.post(
                f"{ELEVENLABS_BASE}/text-to-speech/{voice}",
                json=payload,
                headers={"xi-api-key": self.api_key, "Content-Type": "application/json"},
                timeout=aiohttp.ClientTimeout(total=settings.VOICE_REQUEST_TIMEOUT),
            ) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise ProviderError(self.name, f"ElevenLabs API error: {response.reason} - {error_text}")
                return await response.read(), audio_format

    async def get_voices(self) -> List[Voice]:
        try:
            async with open_session(self.session) as session:
                async with session.get(
                    f"{ELEVENLABS_BASE}/voices",
                    headers={"xi-api-key": self.api_key},
                    timeout=aiohttp.ClientTimeout(total=settings.VOICE_REQUEST_TIMEOUT),
                ) as response:
                    if response.status != 200:
                        raise ProviderError(self.name, f"ElevenLabs API error: {response.reason}")
                    data = await response.json()
        except _VENDOR_ERRORS as e:
            logger.error("Failed to fetch ElevenLabs voices: %s", e)
            raise ProviderError(self.name, f"Failed to fetch ElevenLabs voices: {e}") from e

        voices = []
        for item in data.get("voices", []):
            labels = item.get("labels") or {}
            voices.append(Voice(
                id=item["voice_id"],
                name=item.get("name", item["voice_id"]),
                description=item.get("description"),
                preview_url=item.get("preview_url"),
                language=labels.get("language"),
                gender=labels.get("gender"),
                age=labels.get("age"),
                accent=labels.get("accent"),
                use_case=labels.get("use_case"),
            ))
        return voices

    async def clone_voice(self, name: str, description: str, samples: Sequence[bytes]) -> Voice:
        """Create an instant voice clone from mp3 samples."""
        form = aiohttp.FormData()
        form.add_field("name", name)
        form.add_field("description", description)
        for index, sample in enumerate(samples):
            form.add_field("files", sample, filename=f"sample_{index}.mp3", content_type="audio/mpeg")

        try:
            async with open_session(self.session) as session:
                async with session.post(
                    f"{ELEVENLABS_BASE}/voices/add",
                    data=form,
                    headers={"xi-api-key": self.api_key},
                    timeout=aiohttp.ClientTimeout(total=settings.VOICE_REQUEST_TIMEOUT),
                ) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise ProviderError(self.name, f"ElevenLabs API error: {response.reason} - {error_text}")
                    data = await response.json()
        except _VENDOR_ERRORS as e:
            logger.error("Voice cloning failed: %s", e)
            raise ProviderError(self.name, f"Voice cloning failed: {e}") from e

        logger.info("Voice cloned successfully (voice_id=%s, name=%s)", data["voice_id"], name)
        return Voice(id=data["voice_id"], name=name, description=description)


class PlayHTTTSProvider(TTSProvider):
    name = "playht"
    label = "PlayHT"
    default_voice = "jennifer"

    def __init__(self, api_key: str, user_id: str, session: Optional[aiohttp.ClientSession] = None):
        self.api_key = api_key
        self.user_id = user_id
        self.session = session

    def _headers(self) -> Dict[str, str]:
        return {"AUTHORIZATION": self.api_key, "X-USER-ID": self.user_id}

    async def _synthesize(self, text, voice, speed, output_format, options):
        audio_format = output_format or "mp3"
        async with open_session(self.session) as session:
            async with session.post(
                f"{PLAYHT_BASE}/tts",
                json={"text": text, "voice": voice, "output_format": audio_format, "speed": speed or 1.0},
                headers={**self._headers(), "Content-Type": "application/json"},
                timeout=aiohttp.ClientTimeout(total=settings.VOICE_REQUEST_TIMEOUT),
            ) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise ProviderError(self.name, f"PlayHT API error: {response.reason} - {error_text}")
                return await response.read(), audio_format

    async def get_voices(self) -> List[Voice]:
        try:
            async with open_session(self.session) as session:
                async with session.get(
                    f"{PLAYHT_BASE}/voices",
                    headers=self._headers(),
                    timeout=aiohttp.ClientTimeout(total=settings.VOICE_REQUEST_TIMEOUT),
                ) as response:
                    if response.status != 200:
                        raise ProviderError(self.name, f"PlayHT API error: {response.reason}")
                    data = await response.json()
        except _VENDOR_ERRORS as e:
            logger.error("Failed to fetch PlayHT voices: %s", e)
            raise ProviderError(self.name, f"Failed to fetch PlayHT voices: {e}") from e

        return [
            Voice(
                id=item["id"],
                name=item.get("name", item["id"]),
                language=item.get("language"),
                gender=item.get("gender"),
                age=item.get("age"),
                accent=item.get("accent"),
            )
            for item in data
        ]


class TTSProviderFactory:
    """Holds the providers whose credentials are configured."""

    def __init__(self, providers: Optional[Dict[str, TTSProvider]] = None):
        self.providers: Dict[str, TTSProvider] = dict(providers or {})

    @classmethod
    def from_settings(cls) -> "TTSProviderFactory":
        providers: Dict[str, TTSProvider] = {}
        if settings.OPENAI_API_KEY:
            providers["openai"] = OpenAITTSProvider(settings.OPENAI_API_KEY)
        if settings.ELEVENLABS_API_KEY:
            providers["elevenlabs"] = ElevenLabsTTSProvider(settings.ELEVENLABS_API_KEY)
        if settings.PLAYHT_API_KEY and settings.PLAYHT_USER_ID:
            providers["playht"] = PlayHTTTSProvider(settings.PLAYHT_API_KEY, settings.PLAYHT_USER_ID)
        return cls(providers)

    def get_provider(self, name: str) -> TTSProvider:
        provider = self.providers.get(name)
        if provider is None:
            raise NotFoundError(f"TTS provider '{name}' not found or not configured")
        return provider

    def has_provider(self, name: str) -> bool:
        return name in self.providers

    def get_available_providers(self) -> List[str]:
        return list(self.providers)
