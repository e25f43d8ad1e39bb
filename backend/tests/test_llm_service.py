"""
Tests for the OpenAI-compatible LLM wrapper, using a stand-in client.
"""

from types import SimpleNamespace

import httpx
import openai
import pytest

from mission_control.exceptions import ProviderError
from mission_control.services.llm_service import LLMService


class FakeCompletions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(
            choices=[SimpleNamespace(message=message)],
            usage=SimpleNamespace(total_tokens=42),
        )


def _service(completions):
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return LLMService(model_id="local-model", client=client)


def _connection_error():
    return openai.APIConnectionError(request=httpx.Request("POST", "http://llm.local/v1/chat/completions"))


async def test_chat_builds_messages_and_reports_usage():
    completions = FakeCompletions(content="Hi!")

    response = await _service(completions).chat(
        [{"role": "user", "content": "Hello"}, {"role": "tool", "content": "42"}],
        system_prompt="Be brief.",
        temperature=0.1,
    )

    assert response["content"] == "Hi!"
    assert response["tokens_used"] == 42
    assert response["model_id"] == "local-model"
    request = completions.requests[0]
    assert request["messages"] == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "Hello"},
        {"role": "assistant", "content": "42"},
    ]
    assert request["temperature"] == 0.1
    assert request["stream"] is False


async def test_chat_failure_is_a_provider_error():
    with pytest.raises(ProviderError) as exc_info:
        await _service(FakeCompletions(error=_connection_error())).chat([{"role": "user", "content": "x"}])
    assert exc_info.value.provider == "llm"


async def test_generate_title_strips_quotes():
    title = await _service(FakeCompletions(content='"Trip to Lisbon"')).generate_title("Help me plan a trip")
    assert title == "Trip to Lisbon"


async def test_generate_title_falls_back_to_message_text():
    service = _service(FakeCompletions(error=_connection_error()))
    assert await service.generate_title("Short question") == "Short question"

    service = _service(FakeCompletions(content="   "))
    assert await service.generate_title("Another one") == "Another one"
