"""
Client for the Supabase Edge Functions (task processor, workflow engine,
AI orchestrator).

Failed calls are retried with exponential backoff on 5xx, 429, timeouts and
network errors. The client never raises for HTTP failures; it returns an
``ApiResponse`` with ``success=False`` instead.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp
from pydantic import BaseModel

from ..config import settings
from ..logger import get_logger

logger = get_logger(__name__)

TIMEOUT_STATUS = 408


class ApiError(BaseModel):
    error: str
    details: Optional[Any] = None
    code: Optional[str] = None
    status_code: int = 500


class ApiResponse(BaseModel):
    success: bool
    data: Optional[Any] = None
    error: Optional[ApiError] = None


@dataclass
class EdgeClientConfig:
    supabase_url: str
    anon_key: str
    auth_token: Optional[str] = None
    timeout: float = 30.0  # seconds
    max_retries: int = 3
    retry_delay: float = 1.0  # seconds, doubled per attempt
    debug: bool = False

    @classmethod
    def from_settings(cls, auth_token: Optional[str] = None) -> "EdgeClientConfig":
        return cls(
            supabase_url=settings.SUPABASE_URL,
            anon_key=settings.SUPABASE_ANON_KEY,
            auth_token=auth_token,
            timeout=settings.EDGE_TIMEOUT,
            max_retries=settings.EDGE_MAX_RETRIES,
            retry_delay=settings.EDGE_RETRY_DELAY,
            debug=settings.DEBUG,
        )


class EdgeFunctionError(Exception):
    """A single failed attempt. Only used inside the retry loop."""

    def __init__(self, message: str, status_code: Optional[int] = None, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


def is_retryable(status_code: Optional[int]) -> bool:
    """Client errors are final, except rate limiting. Timeouts report 408 and are final too."""
    if status_code is None:
        return True
    return not (400 <= status_code < 500) or status_code == 429


class HttpClient:
    """POSTs JSON to ``{supabase_url}/functions/v1/{name}``."""

    def __init__(
        self,
        config: EdgeClientConfig,
        session: Optional[aiohttp.ClientSession] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self._session = session
        self._sleep = sleep

    def set_auth_token(self, token: Optional[str]) -> None:
        self.config.auth_token = token

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "apikey": self.config.anon_key,
        }
        if self.config.auth_token:
            headers["Authorization"] = f"Bearer {self.config.auth_token}"
        return headers

    async def post(
        self,
        function_name: str,
        body: Dict[str, Any],
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
    ) -> ApiResponse:
        timeout = timeout if timeout is not None else self.config.timeout
        max_retries = retries if retries is not None else self.config.max_retries

        last_error: Optional[EdgeFunctionError] = None
        for attempt in range(max_retries + 1):
            if attempt > 0:
                logger.warning("Retry attempt %d/%d for %s", attempt, max_retries, function_name)
            try:
                data = await self._request(function_name, body, timeout)
                if self.config.debug:
                    logger.debug("Edge function %s succeeded", function_name)
                return ApiResponse(success=True, data=data)
            except EdgeFunctionError as e:
                last_error = e

            if not is_retryable(last_error.status_code):
                break
            if attempt < max_retries:
                delay = self.config.retry_delay * (2 ** attempt)
                if self.config.debug:
                    logger.debug("Waiting %.2fs before retrying %s", delay, function_name)
                await self._sleep(delay)

        error = ApiError(
            error=str(last_error) if last_error else "Unknown error occurred",
            details=last_error.details if last_error else None,
            status_code=(last_error.status_code if last_error and last_error.status_code else 500),
        )
        logger.error("Edge function %s failed: %s (status %s)", function_name, error.error, error.status_code)
        return ApiResponse(success=False, error=error)

    async def _request(self, function_name: str, body: Dict[str, Any], timeout: float) -> Any:
        url = f"{self.config.supabase_url.rstrip('/')}/functions/v1/{function_name}"
        try:
            if self._session is not None:
                return await self._send(self._session, url, body, timeout)
            async with aiohttp.ClientSession() as session:
                return await self._send(session, url, body, timeout)
        except asyncio.TimeoutError:
            raise EdgeFunctionError(f"Request timeout after {int(timeout * 1000)}ms", TIMEOUT_STATUS)
        except aiohttp.ClientError as e:
            raise EdgeFunctionError(f"Network error: {e}")

    async def _send(self, session: aiohttp.ClientSession, url: str, body: Dict[str, Any], timeout: float) -> Any:
        async with session.post(
            url,
            json=body,
            headers=self._headers(),
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as response:
            try:
                data = await response.json(content_type=None)
            except ValueError:
                data = {"error": await response.text()}

            if response.status >= 400:
                message = data.get("error") if isinstance(data, dict) else None
                raise EdgeFunctionError(message or f"HTTP {response.status}", response.status, data)
            return data


class TaskProcessorClient:
    FUNCTION = "task-processor"

    def __init__(self, http: HttpClient):
        self.http = http

    async def prioritize(self, task_id: str) -> ApiResponse:
        return await self.http.post(self.FUNCTION, {"action": "prioritize", "taskId": task_id})

    async def suggest_breakdown(self, task_title: str, task_description: str = "") -> ApiResponse:
        return await self.http.post(self.FUNCTION, {
            "action": "suggest_breakdown",
            "taskTitle": task_title,
            "taskDescription": task_description,
        })

    async def detect_dependencies(self, task_id: str) -> ApiResponse:
        return await self.http.post(self.FUNCTION, {"action": "detect_dependencies", "taskId": task_id})


class WorkflowEngineClient:
    FUNCTION = "workflow-engine"

    def __init__(self, http: HttpClient):
        self.http = http

    async def _call(self, action: str, workflow_id: str, instance_id: Optional[str] = None,
                    context: Optional[Dict[str, Any]] = None) -> ApiResponse:
        body: Dict[str, Any] = {"action": action, "workflowId": workflow_id}
        if instance_id is not None:
            body["instanceId"] = instance_id
        if context is not None:
            body["context"] = context
        return await self.http.post(self.FUNCTION, body)

    async def start(self, workflow_id: str, context: Optional[Dict[str, Any]] = None) -> ApiResponse:
        return await self._call("start", workflow_id, context=context or {})

    async def transition(self, workflow_id: str, instance_id: str, context: Optional[Dict[str, Any]] = None) -> ApiResponse:
        return await self._call("transition", workflow_id, instance_id, context)

    async def pause(self, workflow_id: str, instance_id: str) -> ApiResponse:
        return await self._call("pause", workflow_id, instance_id)

    async def resume(self, workflow_id: str, instance_id: str) -> ApiResponse:
        return await self._call("resume", workflow_id, instance_id)

    async def complete(self, workflow_id: str, instance_id: str) -> ApiResponse:
        return await self._call("complete", workflow_id, instance_id)


class AIOrchestratorClient:
    FUNCTION = "ai-orchestrator"

    def __init__(self, http: HttpClient):
        self.http = http

    async def chat(
        self,
        message: str,
        conversation_id: Optional[str] = None,
        agent_type: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> ApiResponse:
        body: Dict[str, Any] = {"message": message}
        if conversation_id:
            body["conversationId"] = conversation_id
        if agent_type:
            body["agentType"] = agent_type
        if context:
            body["context"] = context
        return await self.http.post(self.FUNCTION, body)

    async def continue_conversation(self, conversation_id: str, message: str) -> ApiResponse:
        return await self.chat(message, conversation_id=conversation_id)

    async def chat_with_agent(self, agent_type: str, message: str, context: Optional[Dict[str, Any]] = None) -> ApiResponse:
        return await self.chat(message, agent_type=agent_type, context=context)


class EdgeFunctionClient:
    """Entry point: ``client.tasks``, ``client.workflows`` and ``client.ai``."""

    def __init__(
        self,
        config: Optional[EdgeClientConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.http = HttpClient(config or EdgeClientConfig.from_settings(), session=session, sleep=sleep)
        self.tasks = TaskProcessorClient(self.http)
        self.workflows = WorkflowEngineClient(self.http)
        self.ai = AIOrchestratorClient(self.http)

    def set_auth_token(self, token: Optional[str]) -> None:
        self.http.set_auth_token(token)
