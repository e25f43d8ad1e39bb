"""
Tests for the Edge Function client and its retry policy.
"""

import asyncio

import aiohttp
import pytest

from mission_control.services.edge_client import EdgeClientConfig, EdgeFunctionClient, is_retryable

from conftest import FakeResponse, FakeSession, RecordingSleep


def _client(responses, max_retries=3, auth_token=None):
    session = FakeSession(responses)
    sleep = RecordingSleep()
    config = EdgeClientConfig(
        supabase_url="https://project.supabase.co/",
        anon_key="anon-key",
        auth_token=auth_token,
        max_retries=max_retries,
        retry_delay=1.0,
    )
    return EdgeFunctionClient(config, session=session, sleep=sleep), session, sleep


@pytest.mark.parametrize("status_code,expected", [
    (None, True), (500, True), (503, True), (429, True), (400, False), (404, False), (408, False),
])
def test_is_retryable(status_code, expected):
    assert is_retryable(status_code) is expected


async def test_success_posts_action_body():
    client, session, sleep = _client([FakeResponse(200, {"priority": "high"})], auth_token="jwt")

    response = await client.tasks.prioritize("task-1")

    assert response.success
    assert response.data == {"priority": "high"}
    request = session.requests[0]
    assert request["url"] == "https://project.supabase.co/functions/v1/task-processor"
    assert request["json"] == {"action": "prioritize", "taskId": "task-1"}
    assert request["headers"]["apikey"] == "anon-key"
    assert request["headers"]["Authorization"] == "Bearer jwt"
    assert sleep.delays == []


async def test_no_authorization_header_without_token():
    client, session, sleep = _client([FakeResponse(200, {})])
    await client.workflows.start("wf-1")
    assert "Authorization" not in session.requests[0]["headers"]
    assert session.requests[0]["json"] == {"action": "start", "workflowId": "wf-1", "context": {}}


async def test_server_errors_retry_with_exponential_backoff():
    client, session, sleep = _client([
        FakeResponse(500, {"error": "boom"}),
        FakeResponse(502, {"error": "bad gateway"}),
        FakeResponse(200, {"ok": True}),
    ])

    response = await client.ai.chat("hello")

    assert response.success
    assert len(session.requests) == 3
    assert sleep.delays == [1.0, 2.0]


async def test_gives_up_after_max_retries():
    client, session, sleep = _client([FakeResponse(503, {"error": "down"})] * 4)

    response = await client.tasks.detect_dependencies("task-1")

    assert not response.success
    assert response.error.error == "down"
    assert response.error.status_code == 503
    assert len(session.requests) == 4
    assert sleep.delays == [1.0, 2.0, 4.0]


async def test_client_errors_are_not_retried():
    client, session, sleep = _client([FakeResponse(400, {"error": "bad request"})])

    response = await client.tasks.suggest_breakdown("Write docs")

    assert not response.success
    assert response.error.status_code == 400
    assert len(session.requests) == 1
    assert sleep.delays == []


async def test_rate_limit_is_retried():
    client, session, sleep = _client([FakeResponse(429, {"error": "slow down"}), FakeResponse(200, {"ok": 1})])
    response = await client.ai.chat_with_agent("planner", "hi")
    assert response.success
    assert session.requests[1]["json"] == {"message": "hi", "agentType": "planner"}


async def test_timeout_reports_408_and_stops():
    client, session, sleep = _client([asyncio.TimeoutError()])

    response = await client.workflows.pause("wf-1", "inst-1")

    assert not response.success
    assert response.error.status_code == 408
    assert "timeout" in response.error.error.lower()
    assert len(session.requests) == 1


async def test_network_errors_are_retried():
    client, session, sleep = _client([aiohttp.ClientConnectionError("refused"), FakeResponse(200, {"ok": 1})])
    response = await client.ai.continue_conversation("conv-1", "more")
    assert response.success
    assert session.requests[1]["json"] == {"message": "more", "conversationId": "conv-1"}


async def test_zero_retries_makes_one_attempt():
    client, session, sleep = _client([FakeResponse(500, {"error": "boom"})], max_retries=0)
    response = await client.tasks.prioritize("t")
    assert not response.success
    assert len(session.requests) == 1
    assert sleep.delays == []


async def test_set_auth_token_applies_to_later_calls():
    client, session, sleep = _client([FakeResponse(200, {})])
    client.set_auth_token("fresh")
    await client.workflows.complete("wf", "inst")
    assert session.requests[0]["headers"]["Authorization"] == "Bearer fresh"
