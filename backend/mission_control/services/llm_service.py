"""
LLM service for the OpenAI-compatible chat completions API.
"""

from openai import AsyncOpenAI, OpenAIError
from typing import AsyncGenerator, List, Optional, Dict, Any
import time

from ..config import settings
from ..exceptions import ProviderError
from ..logger import get_logger
from .conversation_service import generate_title_from_message

logger = get_logger(__name__)


class LLMService:
    """Service for LLM interactions."""

    def __init__(
        self,
        api_base: Optional[str] = None,
        model_id: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.api_base = api_base or settings.DEFAULT_API_BASE
        self.model_id = model_id or settings.DEFAULT_MODEL_ID
        self.api_key = api_key or settings.OPENAI_API_KEY or "not-needed"  # local servers often don't check keys

        self.client = client or AsyncOpenAI(
            base_url=self.api_base,
            api_key=self.api_key
        )

    async def list_models(self) -> List[Dict[str, Any]]:
        """List available models from the LLM API."""
        try:
            response = await self.client.models.list()
            return [
                {
                    "id": model.id,
                    "owned_by": getattr(model, "owned_by", "unknown"),
                    "created": getattr(model, "created", None)
                }
                for model in response.data
            ]
        except OpenAIError as e:
            logger.error("Error listing models: %s", e)
            return []

    def _build_messages(
        self,
        conversation_history: List[Dict[str, Any]],
        system_prompt: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Build the full message list for the API call."""
        messages = []

        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})

        for msg in conversation_history:
            # tool results go back to the model as plain assistant context
            role = msg["role"] if msg["role"] in ("user", "assistant", "system") else "assistant"
            messages.append({"role": role, "content": msg.get("content", "")})

        return messages

    async def chat_stream(
        self,
        conversation_history: List[Dict[str, Any]],
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
    ) -> AsyncGenerator[str, None]:
        """Stream chat response from the LLM."""
        messages = self._build_messages(conversation_history, system_prompt)

        try:
            stream = await self.client.chat.completions.create(
                model=model or self.model_id,
                messages=messages,
                temperature=temperature if temperature is not None else settings.DEFAULT_TEMPERATURE,
                max_tokens=max_tokens or settings.DEFAULT_MAX_TOKENS,
                stream=True
            )

            async for chunk in stream:
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content
        except OpenAIError as e:
            logger.error("Streaming completion failed: %s", e)
            raise ProviderError("llm", f"LLM request failed: {e}") from e

    async def chat(
        self,
        conversation_history: List[Dict[str, Any]],
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Non-streaming chat response."""
        messages = self._build_messages(conversation_history, system_prompt)
        model_id = model or self.model_id

        start_time = time.time()

        try:
            response = await self.client.chat.completions.create(
                model=model_id,
                messages=messages,
                temperature=temperature if temperature is not None else settings.DEFAULT_TEMPERATURE,
                max_tokens=max_tokens or settings.DEFAULT_MAX_TOKENS,
                stream=False
            )
        except OpenAIError as e:
            logger.error("Completion failed: %s", e)
            raise ProviderError("llm", f"LLM request failed: {e}") from e

        generation_time = int((time.time() - start_time) * 1000)

        return {
            "content": response.choices[0].message.content or "",
            "tokens_used": response.usage.total_tokens if response.usage else 0,
            "generation_time": generation_time,
            "model_id": model_id
        }

    async def generate_title(self, first_message: str) -> str:
        """Generate a title for a conversation based on the first message."""
        try:
            response = await self.client.chat.completions.create(
                model=self.model_id,
                messages=[
                    {
                        "role": "system",
                        "content": "Generate a very short title (max 6 words) for a conversation that starts with the following message. Only respond with the title, nothing else."
                    },
                    {
                        "role": "user",
                        "content": first_message[:500]
                    }
                ],
                temperature=0.3,
                max_tokens=50
            )
            title = (response.choices[0].message.content or "").strip().strip('"\'')
        except OpenAIError as e:
            logger.warning("Title generation failed, using message text: %s", e)
            title = ""

        return title[:100] or generate_title_from_message(first_message)
