"""
Speech-to-text and text-to-speech schemas.
"""

from pydantic import BaseModel, Field
from typing import List, Optional


class WordTiming(BaseModel):
    word: str
    start: float  # seconds
    end: float
    confidence: Optional[float] = None


class STTResult(BaseModel):
    text: str
    confidence: float = 1.0
    language: Optional[str] = None
    duration: Optional[float] = None  # milliseconds spent transcribing
    words: List[WordTiming] = []


class TTSResult(BaseModel):
    audio: bytes
    duration: float  # milliseconds spent synthesizing
    format: str = "mp3"


class Voice(BaseModel):
    id: str
    name: str
    gender: Optional[str] = None
    accent: Optional[str] = None
    age: Optional[str] = None
    language: Optional[str] = None
    use_case: Optional[str] = None
    description: Optional[str] = None
    preview_url: Optional[str] = None


class SynthesizeRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=5000)
    provider: str = "openai"
    voice: Optional[str] = None
    speed: float = Field(1.0, ge=0.25, le=4.0)
    format: str = Field("mp3", pattern=r"^(mp3|opus|aac|flac|wav|pcm)$")


class SynthesizeResponse(BaseModel):
    url: str
    provider: str
    voice: Optional[str] = None
    format: str
    duration: float


class ProviderList(BaseModel):
    stt: List[str]
    tts: List[str]


class CloneVoiceResponse(BaseModel):
    voice_id: str


class TranscriptionResponse(STTResult):
    provider: str


class VoiceCostEstimate(BaseModel):
    provider: str
    estimated_cost: float
    currency: str = "USD"
    audio_duration_seconds: Optional[float] = None
    character_count: Optional[int] = None
