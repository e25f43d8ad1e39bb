"""
Action executors and condition checks for scheduled tasks.
"""

import asyncio
import json
from datetime import datetime
from typing import Any, Dict, List, Optional

import aiohttp

from ..config import settings
from .conversation_service import utcnow
from .http_session import open_session
from .llm_service import LLMService

OUTPUT_PREVIEW_LENGTH = 2000

# action types that need an integration this service does not ship
_UNCONFIGURED = {
    "send-email": "Email sender not configured",
    "run-code": "Code sandbox not configured",
    "file-operation": "File storage not configured",
    "google-workspace": "Google Workspace client not configured",
}


class TaskActionError(Exception):
    """An action could not be carried out."""

    def __init__(self, message: str, kind: str = "error"):
        super().__init__(message)
        self.kind = kind  # matches RetryPolicy.retry_on: timeout, error, rate-limit


class ExecutionLogger:
    """Collects the per-execution log stored on the execution row."""

    def __init__(self):
        self.entries: List[Dict[str, Any]] = []

    def log(self, message: str, level: str = "info", data: Any = None) -> None:
        entry = {"timestamp": utcnow().isoformat(), "level": level, "message": message}
        if data is not None:
            entry["data"] = data
        self.entries.append(entry)

    def error(self, message: str, data: Any = None) -> None:
        self.log(message, "error", data)


# Conditions

def _lookup(data: Any, path: Optional[str]) -> Any:
    """Dotted-path lookup into nested dicts; None when any step is missing."""
    if not path:
        return data
    current = data
    for key in path.split("."):
        if isinstance(current, dict) and key in current:
            current = current[key]
        else:
            return None
    return current


def _time_field(now: datetime, field: Optional[str]) -> Any:
    if field == "hour":
        return now.hour
    if field == "minute":
        return now.minute
    if field == "weekday":
        return now.isoweekday() % 7  # 0 = Sunday
    if field == "day":
        return now.day
    if field == "date":
        return now.date().isoformat()
    return now.isoformat()


def _compare(actual: Any, operator: str, expected: Any) -> bool:
    if operator == "exists":
        return actual is not None
    if operator == "not-exists":
        return actual is None
    if operator == "equals":
        return actual == expected
    if operator == "not-equals":
        return actual != expected
    if operator in ("contains", "not-contains"):
        found = actual is not None and expected is not None and str(expected) in (
            actual if isinstance(actual, (list, dict)) else str(actual)
        )
        return found if operator == "contains" else not found
    if operator in ("greater", "less"):
        try:
            left, right = float(actual), float(expected)
        except (TypeError, ValueError):
            return False
        return left > right if operator == "greater" else left < right
    raise ValueError(f"Unknown condition operator: {operator}")


def check_conditions(conditions: List[Dict[str, Any]], context: Dict[str, Any]) -> bool:
    """
    True when every condition holds.

    ``context`` carries ``now`` (aware datetime), ``variables``,
    ``previous_result`` and ``api_response``.
    """
    for condition in conditions or []:
        kind = condition.get("type")
        field = condition.get("field")
        if kind == "time":
            actual = _time_field(context["now"], field)
        elif kind == "variable":
            actual = _lookup(context.get("variables") or {}, field)
        elif kind == "previous-result":
            actual = _lookup(context.get("previous_result"), field)
        elif kind == "api-response":
            actual = _lookup(context.get("api_response"), field)
        else:
            raise ValueError(f"Unknown condition type: {kind}")

        if not _compare(actual, condition.get("operator", "equals"), condition.get("value")):
            return False
    return True


# Actions

class ActionExecutor:
    """Runs one action description and returns a JSON-serializable result."""

    def __init__(self, llm=None, session: Optional[aiohttp.ClientSession] = None):
        self._llm = llm
        self.session = session

    @property
    def llm(self):
        if self._llm is None:
            self._llm = LLMService()
        return self._llm

    async def execute(self, action: Dict[str, Any], logs: ExecutionLogger) -> Dict[str, Any]:
        action_type = action.get("type")
        if action_type == "ai-prompt":
            return await self._ai_prompt(action, logs)
        if action_type == "generate-report":
            return await self._generate_report(action, logs)
        if action_type == "webhook":
            return await self._webhook(action, logs)
        if action_type == "web-scrape":
            return await self._web_scrape(action, logs)
        if action_type == "chain":
            return await self._chain(action, logs)
        if action_type in _UNCONFIGURED:
            raise TaskActionError(_UNCONFIGURED[action_type])
        raise TaskActionError(f"Unknown action type: {action_type}")

    async def _ai_prompt(self, action: Dict[str, Any], logs: ExecutionLogger) -> Dict[str, Any]:
        logs.log("Executing AI prompt...")
        response = await self.llm.chat(
            [{"role": "user", "content": action["prompt"]}],
            system_prompt=action.get("system_prompt"),
            temperature=action.get("temperature"),
            max_tokens=action.get("max_tokens"),
            model=action.get("model"),
        )
        logs.log(f"AI response received ({len(response['content'])} chars)")
        return {
            "response": response["content"],
            "model": response["model_id"],
            "tokens_used": response["tokens_used"],
        }

    async def _generate_report(self, action: Dict[str, Any], logs: ExecutionLogger) -> Dict[str, Any]:
        logs.log("Generating report...")
        prompt = (
            f"Generate a {action.get('report_type', 'summary')} report about: {action['data_source']}\n\n"
            "Structure it as:\n"
            "1. Executive Summary\n2. Key Findings\n3. Detailed Analysis\n4. Recommendations\n5. Conclusion\n\n"
            f"Format the report as {action.get('format', 'markdown')}."
        )
        if action.get("template"):
            prompt += f"\n\nFollow this template:\n{action['template']}"

        response = await self.llm.chat([{"role": "user", "content": prompt}], max_tokens=8192)
        logs.log(f"Report generated ({len(response['content'])} chars)")
        return {
            "report": response["content"],
            "format": action.get("format", "markdown"),
            "generated_at": utcnow().isoformat(),
            "tokens_used": response["tokens_used"],
        }

    async def _webhook(self, action: Dict[str, Any], logs: ExecutionLogger) -> Dict[str, Any]:
        method = action.get("method", "POST")
        logs.log(f"Calling webhook: {method} {action['url']}...")

        timeout_s = (action["timeout"] / 1000) if action.get("timeout") else settings.SCHEDULER_WEBHOOK_TIMEOUT
        body = action.get("body")
        try:
            async with open_session(self.session) as session:
                async with session.request(
                    method,
                    action["url"],
                    data=json.dumps(body) if body is not None else None,
                    headers={"Content-Type": "application/json", **(action.get("headers") or {})},
                    timeout=aiohttp.ClientTimeout(total=timeout_s),
                ) as response:
                    text = await response.text()
                    status = response.status
        except asyncio.TimeoutError as e:
            raise TaskActionError(f"Webhook timed out after {timeout_s}s", kind="timeout") from e
        except aiohttp.ClientError as e:
            raise TaskActionError(f"Webhook request failed: {e}") from e

        try:
            data = json.loads(text) if text else {}
        except ValueError:
            data = text

        logs.log(f"Webhook responded with status {status}")
        if status >= 400:
            kind = "rate-limit" if status == 429 else "error"
            raise TaskActionError(f"Webhook failed with status {status}: {json.dumps(data)}", kind=kind)
        return {"status": status, "data": data}

    async def _web_scrape(self, action: Dict[str, Any], logs: ExecutionLogger) -> Dict[str, Any]:
        extract_type = action.get("extract_type", "text")
        if extract_type not in ("text", "html") or action.get("selector") or action.get("javascript"):
            raise TaskActionError("Web scraper not configured")

        logs.log(f"Scraping {action['url']}...")
        try:
            async with open_session(self.session) as session:
                async with session.get(
                    action["url"],
                    timeout=aiohttp.ClientTimeout(total=settings.SCHEDULER_WEBHOOK_TIMEOUT),
                ) as response:
                    content = await response.text()
                    status = response.status
        except asyncio.TimeoutError as e:
            raise TaskActionError(f"Scrape of {action['url']} timed out", kind="timeout") from e
        except aiohttp.ClientError as e:
            raise TaskActionError(f"Scrape failed: {e}") from e

        if status >= 400:
            raise TaskActionError(f"Scrape failed with status {status}")
        logs.log(f"Fetched {len(content)} characters")
        return {"url": action["url"], "status": status, "content": content}

    async def _chain(self, action: Dict[str, Any], logs: ExecutionLogger) -> Dict[str, Any]:
        steps = action.get("tasks") or []
        continue_on_error = action.get("continue_on_error", False)
        logs.log(f"Executing task chain ({len(steps)} tasks)...")

        results = []
        for index, step in enumerate(steps, start=1):
            logs.log(f"Chain step {index}/{len(steps)}: {step.get('type')}")
            try:
                result = await self.execute(step, logs)
            except Exception as e:
                if not continue_on_error:
                    logs.error(f"Task chain failed: {e}")
                    raise
                logs.log(f"Chain step {index} failed, continuing: {e}", "warn")
                results.append({"step": index, "type": step.get("type"), "error": str(e)})
                continue
            results.append({"step": index, "type": step.get("type"), "result": result})

        logs.log("Task chain completed")
        return {"chain_length": len(steps), "results": results}


def summarize_output(result: Any) -> Optional[str]:
    """Human-readable output stored beside the structured result."""
    if result is None:
        return None
    if isinstance(result, dict):
        for key in ("response", "report", "content"):
            if isinstance(result.get(key), str):
                return result[key][:OUTPUT_PREVIEW_LENGTH]
    return json.dumps(result, default=str)[:OUTPUT_PREVIEW_LENGTH]
