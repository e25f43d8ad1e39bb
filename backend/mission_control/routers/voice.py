"""
Speech-to-text and text-to-speech routes.
"""

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import FileResponse
from typing import Dict, List, Optional

from ..models.profile import Profile
from ..schemas.voice import (
    CloneVoiceResponse,
    ProviderList,
    SynthesizeRequest,
    SynthesizeResponse,
    TranscriptionResponse,
    Voice,
    VoiceCostEstimate,
)
from ..services.voice_service import VoiceService
from ..utils.security import get_current_user, get_current_user_optional


router = APIRouter(prefix="/api/voice", tags=["Voice"])


async def get_voice_service(
    current_user: Optional[Profile] = Depends(get_current_user_optional),
) -> VoiceService:
    """Voice service with the caller's preferred providers as defaults."""
    if current_user is None:
        return VoiceService()
    return VoiceService(
        default_stt_provider=current_user.stt_provider or "whisper",
        default_tts_provider=current_user.tts_provider or "openai",
        default_voice=current_user.tts_voice or "alloy",
    )


@router.get("/providers", response_model=ProviderList)
async def list_providers(voice_service: VoiceService = Depends(get_voice_service)):
    """Providers whose API keys are configured."""
    return ProviderList(
        stt=voice_service.stt.get_available_providers(),
        tts=voice_service.tts.get_available_providers(),
    )


@router.post("/transcribe", response_model=TranscriptionResponse)
async def transcribe(
    file: UploadFile = File(...),
    provider: Optional[str] = Form(None),
    language: Optional[str] = Form(None),
    voice_service: VoiceService = Depends(get_voice_service)
):
    """Transcribe an uploaded recording, falling back across providers."""
    audio = await file.read()
    if not audio:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty audio file")

    used, result = await voice_service.transcribe(audio, provider, language)
    return TranscriptionResponse(provider=used, **result.model_dump())


@router.post("/synthesize", response_model=SynthesizeResponse)
async def synthesize(
    request: SynthesizeRequest,
    current_user: Profile = Depends(get_current_user),
    voice_service: VoiceService = Depends(get_voice_service)
):
    """Generate speech and store it for playback."""
    return await voice_service.synthesize_to_file(
        request.text,
        current_user.id,
        provider=request.provider,
        voice=request.voice,
        speed=request.speed,
        output_format=request.format,
    )


@router.get("/voices", response_model=Dict[str, List[Voice]])
async def list_all_voices(voice_service: VoiceService = Depends(get_voice_service)):
    return await voice_service.get_all_voices()


@router.get("/voices/{provider}", response_model=List[Voice])
async def list_voices(provider: str, voice_service: VoiceService = Depends(get_voice_service)):
    return await voice_service.get_voices(provider)


@router.post("/clone", response_model=CloneVoiceResponse, status_code=status.HTTP_201_CREATED)
async def clone_voice(
    name: str = Form(...),
    description: str = Form(""),
    files: List[UploadFile] = File(...),
    current_user: Profile = Depends(get_current_user),
    voice_service: VoiceService = Depends(get_voice_service)
):
    """Clone a voice from one or more audio samples (ElevenLabs)."""
    samples = [await f.read() for f in files]
    voice = await voice_service.clone_voice(name, description, samples)
    return CloneVoiceResponse(voice_id=voice.id)


@router.get("/cost/stt", response_model=VoiceCostEstimate)
async def stt_cost(
    seconds: float = Query(..., ge=0),
    provider: Optional[str] = None,
    voice_service: VoiceService = Depends(get_voice_service)
):
    return voice_service.estimate_stt_cost(seconds, provider)


@router.get("/cost/tts", response_model=VoiceCostEstimate)
async def tts_cost(
    text: str = Query(..., min_length=1),
    provider: Optional[str] = None,
    voice_service: VoiceService = Depends(get_voice_service)
):
    return voice_service.estimate_tts_cost(text, provider)


@router.get("/audio/{user_id}/{filename}")
async def get_audio(user_id: str, filename: str):
    """Serve generated audio."""
    file_path = VoiceService.get_audio_path(user_id, filename)
    if not file_path:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="File not found"
        )
    return FileResponse(file_path)
