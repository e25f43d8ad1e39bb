"""
Chat routes with streaming support.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict, List, Optional
import asyncio
import json

from ..database import get_db
from ..exceptions import ProviderError, StorageError
from ..logger import get_logger
from ..models.profile import Profile
from ..schemas.branching import BranchOperationResult
from ..schemas.conversation import ConversationCreate, MessageExchange
from ..schemas.message import ChatRequest, ChatResponse, MessageResponse, RegenerateRequest
from ..services.branch_service import BranchService
from ..services.conversation_service import ConversationService, generate_title_from_message
from ..services.llm_service import LLMService
from ..services.persona_service import PersonaService, persona_model_settings, render_system_prompt
from ..utils.security import get_current_user_optional, user_id_of


router = APIRouter(prefix="/api/chat", tags=["Chat"])

logger = get_logger(__name__)


async def get_llm_service(
    current_user: Optional[Profile] = Depends(get_current_user_optional),
) -> LLMService:
    """Get LLM service configured with the caller's default model."""
    return LLMService(model_id=current_user.default_model if current_user else None)


@router.get("/models")
async def list_models(llm_service: LLMService = Depends(get_llm_service)):
    """List available LLM models from the configured API."""
    models = await llm_service.list_models()
    return {"models": models}


async def _generation_options(
    chat_request: ChatRequest,
    current_user: Optional[Profile],
    db: AsyncSession,
) -> Dict[str, Any]:
    """System prompt, model and sampling settings; request beats persona beats profile."""
    options: Dict[str, Any] = {
        "system_prompt": current_user.system_prompt if current_user else None,
        "temperature": current_user.temperature if current_user else None,
        "max_tokens": current_user.max_tokens if current_user else None,
        "model": None,
    }

    if chat_request.persona_id:
        persona = await PersonaService(db).require_persona(chat_request.persona_id, user_id_of(current_user))
        model_settings = persona_model_settings(persona)
        options["system_prompt"] = render_system_prompt(persona)
        options["model"] = model_settings.preferred_model
        options["max_tokens"] = model_settings.max_tokens
        if model_settings.temperature is not None:
            options["temperature"] = model_settings.temperature

    if chat_request.model:
        options["model"] = chat_request.model
    if chat_request.temperature is not None:
        options["temperature"] = chat_request.temperature
    if chat_request.max_tokens:
        options["max_tokens"] = chat_request.max_tokens
    return options


def _history(messages) -> List[Dict[str, Any]]:
    return [{"role": msg.role, "content": msg.content} for msg in messages]


@router.post("")
async def send_message(
    chat_request: ChatRequest,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    llm_service: LLMService = Depends(get_llm_service),
    db: AsyncSession = Depends(get_db)
):
    """Send a chat message and receive a response (streaming or non-streaming)."""
    service = ConversationService(db)
    user_id = user_id_of(current_user)
    options = await _generation_options(chat_request, current_user, db)
    model_id = options.pop("model") or llm_service.model_id

    # The exchange is stored only once the model has answered
    conversation = None
    history: List[Dict[str, Any]] = []
    if chat_request.conversation_id:
        conversation = await service.require_conversation(chat_request.conversation_id, user_id)
        history = _history(await service.get_messages(conversation.id))
    history.append({"role": "user", "content": chat_request.message})

    async def save_exchange(content: str, tokens_used: int = 0, model: Optional[str] = None,
                            metadata: Optional[Dict[str, Any]] = None):
        target = conversation
        if target is None:
            target = await service.create_conversation(
                ConversationCreate(
                    title=generate_title_from_message(chat_request.message) or None,
                    agent_type=chat_request.agent_type,
                    model_used=model_id,
                ),
                user_id,
            )
        user_message, assistant_message = await service.save_message_exchange(target.id, MessageExchange(
            user_content=chat_request.message,
            assistant_content=content,
            model=model or model_id,
            tokens_used=tokens_used,
            metadata=metadata or {},
        ))
        return target, user_message, assistant_message

    if chat_request.stream:
        async def generate():
            full_response = ""
            try:
                async for chunk in llm_service.chat_stream(history, model=model_id, **options):
                    full_response += chunk
                    yield f"data: {json.dumps({'type': 'content', 'content': chunk})}\n\n"
                    await asyncio.sleep(0)

                target, _, assistant_message = await save_exchange(full_response)
                yield f"data: {json.dumps({'type': 'done', 'message_id': assistant_message.id, 'conversation_id': target.id, 'title': target.title})}\n\n"
            except (ProviderError, StorageError) as e:
                logger.error("Chat stream failed: %s", e)
                yield f"data: {json.dumps({'type': 'error', 'error': str(e)})}\n\n"

        return StreamingResponse(
            generate(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no"
            }
        )

    # Non-streaming response
    response = await llm_service.chat(history, model=model_id, **options)
    conversation, user_message, assistant_message = await save_exchange(
        response["content"],
        tokens_used=response["tokens_used"],
        model=response["model_id"],
        metadata={"generation_time": response["generation_time"]},
    )

    return ChatResponse(
        message=MessageResponse.model_validate(assistant_message),
        user_message=MessageResponse.model_validate(user_message),
        conversation_id=conversation.id,
        title=conversation.title,
    )


@router.post("/regenerate", response_model=BranchOperationResult)
async def regenerate_message(
    request: RegenerateRequest,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    llm_service: LLMService = Depends(get_llm_service),
    db: AsyncSession = Depends(get_db)
):
    """Ask for a new answer to an assistant message, kept as a sibling branch."""
    await ConversationService(db).require_conversation(request.conversation_id, user_id_of(current_user))
    try:
        return await BranchService(db).regenerate_response(
            request.conversation_id,
            request.message_id,
            llm_service,
            system_prompt=current_user.system_prompt if current_user else None,
            temperature=current_user.temperature if current_user else None,
            max_tokens=current_user.max_tokens if current_user else None,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
