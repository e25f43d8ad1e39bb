"""
Profile schemas.
"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class ProfileResponse(BaseModel):
    id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    default_model: Optional[str] = None
    system_prompt: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 4096
    tts_provider: Optional[str] = None
    tts_voice: Optional[str] = None
    stt_provider: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProfileUpdate(BaseModel):
    display_name: Optional[str] = Field(None, max_length=100)
    avatar_url: Optional[str] = None
    default_model: Optional[str] = None
    system_prompt: Optional[str] = None
    temperature: Optional[float] = Field(None, ge=0, le=2)
    max_tokens: Optional[int] = Field(None, gt=0, le=200000)
    tts_provider: Optional[str] = Field(None, pattern=r"^(openai|elevenlabs|playht)$")
    tts_voice: Optional[str] = None
    stt_provider: Optional[str] = Field(None, pattern=r"^(whisper|deepgram|assemblyai)$")
