"""
Speech-to-text provider adapters: OpenAI Whisper, Deepgram and AssemblyAI.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp
import openai
from openai import AsyncOpenAI

from ..config import settings
from ..exceptions import NotFoundError, ProviderError
from ..logger import get_logger
from ..schemas.voice import STTResult, WordTiming
from .http_session import open_session

logger = get_logger(__name__)

DEEPGRAM_URL = "https://api.deepgram.com/v1/listen"
ASSEMBLYAI_BASE = "https://api.assemblyai.com/v2"


class STTProvider:
    """Base adapter. Subclasses implement ``_transcribe``."""

    name = ""
    label = ""

    async def transcribe(self, audio: bytes, language: Optional[str] = None) -> STTResult:
        start_time = time.monotonic()
        try:
            result = await self._transcribe(audio, language)
        except (ProviderError, aiohttp.ClientError, asyncio.TimeoutError, openai.OpenAIError) as e:
            logger.error("%s transcription failed: %s", self.label, e)
            raise ProviderError(self.name, f"{self.label} transcription failed: {e}") from e

        result.duration = (time.monotonic() - start_time) * 1000
        logger.info(
            "%s transcription completed (text_length=%d, confidence=%.2f, duration_ms=%d)",
            self.label, len(result.text), result.confidence, result.duration,
        )
        return result

    async def _transcribe(self, audio: bytes, language: Optional[str]) -> STTResult:
        raise NotImplementedError


class WhisperSTTProvider(STTProvider):
    name = "whisper"
    label = "Whisper"

    def __init__(self, api_key: str, client: Optional[AsyncOpenAI] = None, filename: str = "audio.webm"):
        self.client = client or AsyncOpenAI(api_key=api_key)
        self.filename = filename

    async def _transcribe(self, audio: bytes, language: Optional[str]) -> STTResult:
        kwargs: Dict[str, Any] = {
            "file": (self.filename, audio),
            "model": "whisper-1",
            "response_format": "verbose_json",
            "timestamp_granularities": ["word"],
        }
        if language:
            kwargs["language"] = language

        response = await self.client.audio.transcriptions.create(**kwargs)

        words = [
            WordTiming(word=w.word, start=w.start, end=w.end, confidence=1.0)
            for w in (getattr(response, "words", None) or [])
        ]
        return STTResult(
            text=response.text,
            confidence=1.0,  # whisper does not report confidence
            language=getattr(response, "language", None),
            words=words,
        )


class DeepgramSTTProvider(STTProvider):
    name = "deepgram"
    label = "Deepgram"

    def __init__(self, api_key: str, session: Optional[aiohttp.ClientSession] = None,
                 content_type: str = "audio/webm"):
        self.api_key = api_key
        self.session = session
        self.content_type = content_type

    async def _transcribe(self, audio: bytes, language: Optional[str]) -> STTResult:
        async with open_session(self.session) as session:
            async with session.post(
                DEEPGRAM_URL,
                data=audio,
                headers={
                    "Authorization": f"Token {self.api_key}",
                    "Content-Type": self.content_type,
                },
                timeout=aiohttp.ClientTimeout(total=settings.VOICE_REQUEST_TIMEOUT),
            ) as response:
                if response.status != 200:
                    raise ProviderError(self.name, f"Deepgram API error: {response.reason or response.status}")
                data = await response.json()

        channels = (data.get("results") or {}).get("channels") or [{}]
        alternatives = channels[0].get("alternatives") or []
        if not alternatives:
            raise ProviderError(self.name, "No transcription result from Deepgram")
        result = alternatives[0]

        return STTResult(
            text=result.get("transcript", ""),
            confidence=result.get("confidence", 0.0),
            language=language,
            words=[
                WordTiming(word=w["word"], start=w["start"], end=w["end"], confidence=w.get("confidence"))
                for w in result.get("words") or []
            ],
        )


class AssemblyAISTTProvider(STTProvider):
    """Upload, request a transcript, then poll until it completes."""

    name = "assemblyai"
    label = "AssemblyAI"

    def __init__(
        self,
        api_key: str,
        session: Optional[aiohttp.ClientSession] = None,
        poll_interval: Optional[float] = None,
        max_polls: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.api_key = api_key
        self.session = session
        self.poll_interval = poll_interval if poll_interval is not None else settings.ASSEMBLYAI_POLL_INTERVAL
        self.max_polls = max_polls if max_polls is not None else settings.ASSEMBLYAI_MAX_POLLS
        self._sleep = sleep

    async def _transcribe(self, audio: bytes, language: Optional[str]) -> STTResult:
        timeout = aiohttp.ClientTimeout(total=settings.VOICE_REQUEST_TIMEOUT)

        async with open_session(self.session) as session:
            async with session.post(
                f"{ASSEMBLYAI_BASE}/upload",
                data=audio,
                headers={"authorization": self.api_key, "content-type": "application/octet-stream"},
                timeout=timeout,
            ) as response:
                if response.status != 200:
                    raise ProviderError(self.name, f"AssemblyAI upload error: {response.reason or response.status}")
                upload_url = (await response.json())["upload_url"]

            async with session.post(
                f"{ASSEMBLYAI_BASE}/transcript",
                json={
                    "audio_url": upload_url,
                    "language_code": language,
                    "word_boost": [],
                    "boost_param": "default",
                },
                headers={"authorization": self.api_key, "content-type": "application/json"},
                timeout=timeout,
            ) as response:
                if response.status != 200:
                    raise ProviderError(self.name, f"AssemblyAI transcription error: {response.reason or response.status}")
                transcript_id = (await response.json())["id"]

            transcript = await self._poll(session, transcript_id, timeout)

        return STTResult(
            text=transcript.get("text") or "",
            confidence=transcript.get("confidence") or 0.0,
            language=transcript.get("language_code"),
            words=[
                WordTiming(
                    word=w["text"],
                    start=w["start"] / 1000,
                    end=w["end"] / 1000,
                    confidence=w.get("confidence"),
                )
                for w in transcript.get("words") or []
            ],
        )

    async def _poll(self, session: aiohttp.ClientSession, transcript_id: str,
                    timeout: aiohttp.ClientTimeout) -> Dict[str, Any]:
        for _ in range(self.max_polls):
            async with session.get(
                f"{ASSEMBLYAI_BASE}/transcript/{transcript_id}",
                headers={"authorization": self.api_key},
                timeout=timeout,
            ) as response:
                if response.status != 200:
                    raise ProviderError(self.name, f"AssemblyAI transcription error: {response.reason or response.status}")
                data = await response.json()

            if data.get("status") == "completed":
                return data
            if data.get("status") == "error":
                raise ProviderError(self.name, f"AssemblyAI transcription error: {data.get('error')}")
            await self._sleep(self.poll_interval)

        raise ProviderError(self.name, "AssemblyAI transcription timeout")


class STTProviderFactory:
    """Holds the providers whose credentials are configured."""

    def __init__(self, providers: Optional[Dict[str, STTProvider]] = None):
        self.providers: Dict[str, STTProvider] = dict(providers or {})

    @classmethod
    def from_settings(cls) -> "STTProviderFactory":
        providers: Dict[str, STTProvider] = {}
        if settings.OPENAI_API_KEY:
            providers["whisper"] = WhisperSTTProvider(settings.OPENAI_API_KEY)
        if settings.DEEPGRAM_API_KEY:
            providers["deepgram"] = DeepgramSTTProvider(settings.DEEPGRAM_API_KEY)
        if settings.ASSEMBLYAI_API_KEY:
            providers["assemblyai"] = AssemblyAISTTProvider(settings.ASSEMBLYAI_API_KEY)
        return cls(providers)

    def get_provider(self, name: str) -> STTProvider:
        provider = self.providers.get(name)
        if provider is None:
            raise NotFoundError(f"STT provider '{name}' not found or not configured")
        return provider

    def has_provider(self, name: str) -> bool:
        return name in self.providers

    def get_available_providers(self) -> List[str]:
        return list(self.providers)
