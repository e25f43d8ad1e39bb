"""
Persona schemas.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Literal
from datetime import datetime


Tone = Literal["formal", "casual", "playful", "professional", "empathetic"]
Verbosity = Literal["concise", "balanced", "detailed"]
Visibility = Literal["private", "unlisted", "public"]

DEFAULT_PERSONA_MODEL = "claude-3-5-sonnet-20241022"


class Personality(BaseModel):
    tone: Tone = "professional"
    verbosity: Verbosity = "balanced"
    creativity: float = Field(0.7, ge=0, le=1)


class Capabilities(BaseModel):
    web_search: bool = False
    code_execution: bool = False
    image_generation: bool = False
    file_analysis: bool = False
    voice_chat: bool = False
    computer_use: bool = False


class ModelSettings(BaseModel):
    preferred_model: str = DEFAULT_PERSONA_MODEL
    temperature: Optional[float] = Field(None, ge=0, le=2)
    max_tokens: int = Field(4096, gt=0)


class VoiceConfig(BaseModel):
    provider: str
    voice_id: str


class PersonaCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    category: Optional[str] = None
    system_prompt: str = Field(..., min_length=1)
    starter_prompts: List[str] = []
    personality: Optional[dict] = None
    capabilities: Optional[dict] = None
    model_settings: Optional[dict] = None
    voice_config: Optional[VoiceConfig] = None
    visibility: Visibility = "private"
    avatar_url: Optional[str] = None


class PersonaUpdate(BaseModel):
    """Partial update. Nested settings are merged into the stored values."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    category: Optional[str] = None
    system_prompt: Optional[str] = Field(None, min_length=1)
    starter_prompts: Optional[List[str]] = None
    personality: Optional[dict] = None
    capabilities: Optional[dict] = None
    model_settings: Optional[dict] = None
    voice_config: Optional[VoiceConfig] = None
    visibility: Optional[Visibility] = None
    avatar_url: Optional[str] = None


class PersonaResponse(BaseModel):
    id: str
    creator_id: str
    name: str
    slug: str
    avatar_url: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    system_prompt: str
    starter_prompts: List[str] = []
    personality: Personality
    capabilities: Capabilities
    model_settings: ModelSettings
    voice_config: Optional[VoiceConfig] = None
    visibility: Visibility
    is_featured: bool = False
    version: int = 1
    forked_from: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
