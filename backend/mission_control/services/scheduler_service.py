"""
Scheduled tasks: storage, schedule calculation, execution and the
background poller that runs due tasks.
"""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter
from sqlalchemy import delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import NotFoundError, StorageError
from ..logger import get_logger
from ..models.task import ScheduledTask, TaskExecution
from ..schemas.task import (
    CronPreset,
    CronSchedule,
    OneTimeSchedule,
    RecurringSchedule,
    RetryPolicy,
    TaskCreate,
    TaskFilters,
    TaskUpdate,
)
from .conversation_service import utcnow
from .task_actions import ActionExecutor, ExecutionLogger, TaskActionError, check_conditions, summarize_output

logger = get_logger(__name__)

DUE_BATCH_SIZE = 10

CRON_PRESETS = [
    CronPreset(label="Every minute", value="* * * * *", description="Runs every minute"),
    CronPreset(label="Every 5 minutes", value="*/5 * * * *", description="Runs every 5 minutes"),
    CronPreset(label="Every 15 minutes", value="*/15 * * * *", description="Runs every 15 minutes"),
    CronPreset(label="Every 30 minutes", value="*/30 * * * *", description="Runs every 30 minutes"),
    CronPreset(label="Every hour", value="0 * * * *", description="Runs at the start of every hour"),
    CronPreset(label="Every 6 hours", value="0 */6 * * *", description="Runs every 6 hours"),
    CronPreset(label="Every day at midnight", value="0 0 * * *", description="Runs at 00:00 every day"),
    CronPreset(label="Every day at 9 AM", value="0 9 * * *", description="Runs at 09:00 every day"),
    CronPreset(label="Every day at 6 PM", value="0 18 * * *", description="Runs at 18:00 every day"),
    CronPreset(label="Every weekday at 9 AM", value="0 9 * * 1-5", description="Runs at 09:00 Monday through Friday"),
    CronPreset(label="Every Monday at 9 AM", value="0 9 * * 1", description="Runs at 09:00 every Monday"),
    CronPreset(label="Every Sunday at midnight", value="0 0 * * 0", description="Runs at 00:00 every Sunday"),
    CronPreset(label="First of every month", value="0 0 1 * *", description="Runs at 00:00 on the 1st of every month"),
    CronPreset(label="Every quarter", value="0 0 1 */3 *", description="Runs at 00:00 on the 1st of Jan, Apr, Jul, Oct"),
]

ScheduleLike = Union[Dict[str, Any], OneTimeSchedule, RecurringSchedule, CronSchedule]


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _zone(name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone: {name}")


def _schedule_dict(schedule: Optional[ScheduleLike]) -> Dict[str, Any]:
    if schedule is None:
        return {}
    if isinstance(schedule, dict):
        return schedule
    return schedule.model_dump(mode="json")


def recurring_to_cron(schedule: Dict[str, Any]) -> str:
    """
    Express a recurring schedule as a cron expression.

    ``time`` defaults to 00:00 (only the minute is used for hourly runs),
    ``day_of_week`` to Monday and ``day_of_month`` to the 1st. Weekdays
    count from 0 = Sunday, as cron does.
    """
    hour, minute = 0, 0
    if schedule.get("time"):
        hour, minute = (int(part) for part in schedule["time"].split(":"))

    interval = schedule.get("interval")
    if interval == "hourly":
        return f"{minute} * * * *"
    if interval == "daily":
        return f"{minute} {hour} * * *"
    if interval == "weekly":
        day_of_week = schedule.get("day_of_week")
        return f"{minute} {hour} * * {1 if day_of_week is None else day_of_week}"
    if interval == "monthly":
        return f"{minute} {hour} {schedule.get('day_of_month') or 1} * *"
    raise ValueError(f"Unknown recurring interval: {interval}")


def calculate_next_run(schedule: Optional[ScheduleLike], after: Optional[datetime] = None) -> Optional[datetime]:
    """
    Next run time in UTC strictly after ``after``, or None when the
    schedule never fires again (or has no time component at all).

    One-time schedules return their ``run_at`` while it is still ahead.
    """
    data = _schedule_dict(schedule)
    after = as_utc(after) or utcnow()
    kind = data.get("type")

    if kind == "one-time":
        run_at = data.get("run_at")
        if isinstance(run_at, str):
            run_at = datetime.fromisoformat(run_at.replace("Z", "+00:00"))
        if run_at is None:
            return None
        if run_at.tzinfo is None:
            run_at = run_at.replace(tzinfo=_zone(data.get("timezone")))
        run_at = run_at.astimezone(timezone.utc)
        return run_at if run_at > after else None

    if kind == "cron":
        expression = data.get("expression", "")
    elif kind == "recurring":
        expression = recurring_to_cron(data)
    else:
        return None

    if not croniter.is_valid(expression):
        raise ValueError("Invalid cron expression")

    local_after = after.astimezone(_zone(data.get("timezone")))
    next_local = croniter(expression, local_after).get_next(datetime)
    return next_local.astimezone(timezone.utc)


def retry_delay_ms(policy: Union[RetryPolicy, Dict[str, Any]], attempt: int) -> int:
    """Backoff before retry ``attempt`` (0-based), capped at ``max_backoff_ms``."""
    if isinstance(policy, dict):
        policy = RetryPolicy(**policy)
    delay = policy.backoff_ms * (policy.backoff_multiplier ** attempt)
    if policy.max_backoff_ms is not None:
        delay = min(delay, policy.max_backoff_ms)
    return int(delay)


def validate_task(task_type: str, schedule: Optional[ScheduleLike], trigger: Any) -> None:
    data = _schedule_dict(schedule)
    kind = data.get("type")

    if task_type == "one-time" and (kind != "one-time" or not data.get("run_at")):
        raise ValueError("one-time tasks require schedule.run_at")
    if task_type == "recurring" and kind not in ("recurring", "cron"):
        raise ValueError("recurring tasks require an interval or a cron schedule")
    if task_type == "trigger" and not trigger:
        raise ValueError("trigger tasks require trigger configuration")

    if kind == "cron" and not croniter.is_valid(data.get("expression", "")):
        raise ValueError("Invalid cron expression")
    if data.get("timezone"):
        _zone(data["timezone"])


def _first_run(task_type: str, schedule: Dict[str, Any], now: datetime) -> Optional[datetime]:
    if task_type == "one-time":
        # a run_at in the past is due immediately
        return calculate_next_run(schedule, datetime(1970, 1, 1, tzinfo=timezone.utc))
    if task_type == "recurring":
        return calculate_next_run(schedule, now)
    return None


def _error_kind(error: Exception) -> str:
    if isinstance(error, TaskActionError):
        return error.kind
    if isinstance(error, asyncio.TimeoutError):
        return "timeout"
    return "error"


class TaskScheduler:
    """Service for scheduled tasks and their executions."""

    def __init__(self, db: AsyncSession, executor: Optional[ActionExecutor] = None):
        self.db = db
        self.executor = executor or ActionExecutor()

    async def _commit(self, action: str) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError(action, e) from e

    # CRUD

    async def create_task(self, data: TaskCreate, user_id: Optional[str] = None) -> ScheduledTask:
        validate_task(data.type, data.schedule, data.trigger)
        schedule = _schedule_dict(data.schedule)

        task = ScheduledTask(
            user_id=user_id,
            name=data.name,
            description=data.description,
            schedule_type=data.type,
            schedule=schedule,
            action=data.action.model_dump(mode="json"),
            conditions=[c.model_dump(mode="json") for c in data.conditions],
            notifications=data.notification.model_dump(mode="json") if data.notification else None,
            retry_policy=data.retry_policy.model_dump(mode="json") if data.retry_policy else None,
            trigger=data.trigger.model_dump(mode="json") if data.trigger else None,
            status="active",
            next_run_at=_first_run(data.type, schedule, utcnow()),
            tags=list(data.tags),
            category=data.category,
            priority=data.priority,
        )
        self.db.add(task)
        await self._commit("create task")
        await self.db.refresh(task)

        logger.info("Created %s task %s (next run %s)", task.schedule_type, task.id, task.next_run_at)
        return task

    async def get_task(self, task_id: str, user_id: Optional[str] = None) -> Optional[ScheduledTask]:
        stmt = select(ScheduledTask).filter(ScheduledTask.id == task_id)
        if user_id is not None:
            stmt = stmt.filter(ScheduledTask.user_id == user_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def require_task(self, task_id: str, user_id: Optional[str] = None) -> ScheduledTask:
        task = await self.get_task(task_id, user_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        return task

    async def list_tasks(self, user_id: Optional[str] = None, filters: Optional[TaskFilters] = None) -> List[ScheduledTask]:
        stmt = select(ScheduledTask)
        if user_id is not None:
            stmt = stmt.filter(ScheduledTask.user_id == user_id)

        filters = filters or TaskFilters()
        if filters.status:
            stmt = stmt.filter(ScheduledTask.status.in_(filters.status))
        if filters.type:
            stmt = stmt.filter(ScheduledTask.schedule_type.in_(filters.type))
        if filters.category:
            stmt = stmt.filter(ScheduledTask.category == filters.category)
        if filters.search:
            pattern = f"%{filters.search}%"
            stmt = stmt.filter(or_(ScheduledTask.name.ilike(pattern), ScheduledTask.description.ilike(pattern)))
        if filters.has_errors is not None:
            stmt = stmt.filter(
                ScheduledTask.failure_count > 0 if filters.has_errors else ScheduledTask.failure_count == 0
            )

        result = await self.db.execute(stmt.order_by(ScheduledTask.created_at.desc()))
        tasks = list(result.scalars().all())

        # tags live in a JSON column; filter in Python
        if filters.tags:
            wanted = set(filters.tags)
            tasks = [t for t in tasks if wanted & set(t.tags or [])]
        return tasks

    async def update_task(self, task_id: str, updates: TaskUpdate, user_id: Optional[str] = None) -> ScheduledTask:
        task = await self.require_task(task_id, user_id)

        changes = updates.model_dump(exclude_unset=True, mode="json")
        if not changes:
            raise ValueError("No fields to update")

        if "notification" in changes:
            changes["notifications"] = changes.pop("notification")

        if "schedule" in changes or "trigger" in changes:
            schedule = changes.get("schedule", task.schedule)
            trigger = changes.get("trigger", task.trigger)
            validate_task(task.schedule_type, schedule, trigger)
            if "schedule" in changes:
                changes["next_run_at"] = _first_run(task.schedule_type, schedule or {}, utcnow())

        for field, value in changes.items():
            setattr(task, field, value)
        task.updated_at = utcnow()

        await self._commit("update task")
        await self.db.refresh(task)
        return task

    async def delete_task(self, task_id: str, user_id: Optional[str] = None) -> None:
        task = await self.require_task(task_id, user_id)
        await self.db.execute(delete(TaskExecution).where(TaskExecution.task_id == task.id))
        await self.db.delete(task)
        await self._commit("delete task")
        logger.info("Deleted task %s", task_id)

    async def pause_task(self, task_id: str, user_id: Optional[str] = None) -> ScheduledTask:
        task = await self.require_task(task_id, user_id)
        task.status = "paused"
        task.paused_at = utcnow()
        await self._commit("pause task")
        await self.db.refresh(task)
        return task

    async def resume_task(self, task_id: str, user_id: Optional[str] = None) -> ScheduledTask:
        task = await self.require_task(task_id, user_id)
        now = utcnow()
        task.status = "active"
        task.paused_at = None
        task.retry_attempt = 0
        task.next_run_at = _first_run(task.schedule_type, task.schedule or {}, now)
        await self._commit("resume task")
        await self.db.refresh(task)
        return task

    async def get_executions(self, task_id: str, limit: int = 50) -> List[TaskExecution]:
        result = await self.db.execute(
            select(TaskExecution)
            .filter(TaskExecution.task_id == task_id)
            .order_by(TaskExecution.started_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_upcoming_tasks(self, user_id: Optional[str] = None, limit: int = 10) -> List[ScheduledTask]:
        stmt = select(ScheduledTask).filter(
            ScheduledTask.status == "active",
            ScheduledTask.next_run_at.is_not(None),
        )
        if user_id is not None:
            stmt = stmt.filter(ScheduledTask.user_id == user_id)
        result = await self.db.execute(stmt.order_by(ScheduledTask.next_run_at).limit(limit))
        return list(result.scalars().all())

    # Execution

    async def run_now(self, task_id: str, user_id: Optional[str] = None,
                      variables: Optional[Dict[str, Any]] = None) -> TaskExecution:
        task = await self.require_task(task_id, user_id)
        return await self.execute_task(task, triggered_by="manual", variables=variables)

    async def run_due_tasks(self, now: Optional[datetime] = None) -> List[TaskExecution]:
        """Execute every active task whose next run is at or before ``now``, oldest first."""
        now = as_utc(now) or utcnow()
        result = await self.db.execute(
            select(ScheduledTask)
            .filter(
                ScheduledTask.status == "active",
                ScheduledTask.schedule_type.in_(("one-time", "recurring")),
                ScheduledTask.next_run_at.is_not(None),
                ScheduledTask.next_run_at <= now,
            )
            .order_by(ScheduledTask.next_run_at)
            .limit(DUE_BATCH_SIZE)
        )
        tasks = list(result.scalars().all())
        if tasks:
            logger.info("Found %d due tasks", len(tasks))

        executions = []
        for task in tasks:
            triggered_by = "retry" if task.retry_attempt else "schedule"
            executions.append(await self.execute_task(task, triggered_by=triggered_by, now=now))
        return executions

    async def _previous_result(self, task_id: str) -> Any:
        result = await self.db.execute(
            select(TaskExecution.result)
            .filter(TaskExecution.task_id == task_id, TaskExecution.status == "completed")
            .order_by(TaskExecution.completed_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def execute_task(
        self,
        task: ScheduledTask,
        triggered_by: str = "manual",
        now: Optional[datetime] = None,
        variables: Optional[Dict[str, Any]] = None,
    ) -> TaskExecution:
        """
        Run ``task`` once and record the outcome.

        Failures never propagate: they are stored on the execution, and the
        task is either rescheduled per its retry policy or marked failed.
        """
        now = as_utc(now) or utcnow()
        logs = ExecutionLogger()
        logs.log(f"Starting task execution: {task.name}")

        execution = TaskExecution(
            task_id=task.id,
            status="running",
            triggered_by=triggered_by,
            scheduled_at=task.next_run_at,
            started_at=utcnow(),
            retry_attempt=task.retry_attempt or 0,
            logs=list(logs.entries),
        )
        self.db.add(execution)
        await self._commit("start task execution")

        self._notify(task, "start")
        start_time = time.monotonic()

        context = {
            "now": now,
            "variables": variables or {},
            "previous_result": await self._previous_result(task.id),
        }

        try:
            if task.conditions and not check_conditions(task.conditions, context):
                logs.log("Conditions not met, skipping execution")
                self._finish(execution, "completed", logs, start_time)
                self._advance(task, now, ran=False)
                await self._commit("complete task execution")
                return execution

            logs.log(f"Executing action: {task.action.get('type')}")
            result = await self.executor.execute(task.action, logs)
        except Exception as e:
            logger.error("Task %s failed: %s", task.id, e)
            logs.error(f"Task failed: {e}")
            execution.error = str(e)
            self._finish(execution, "failed", logs, start_time)
            self._handle_failure(task, e, now, logs)
            execution.logs = list(logs.entries)
            await self._commit("record task failure")
            self._notify(task, "failure", str(e))
            return execution

        logs.log(f"Task completed successfully in {int((time.monotonic() - start_time) * 1000)}ms")
        execution.result = result
        execution.output = summarize_output(result)
        self._finish(execution, "completed", logs, start_time)

        task.success_count = (task.success_count or 0) + 1
        task.retry_attempt = 0
        self._advance(task, now, ran=True)
        await self._commit("complete task execution")

        logger.info("Task %s completed (%s)", task.id, triggered_by)
        self._notify(task, "success", result)
        return execution

    @staticmethod
    def _finish(execution: TaskExecution, status: str, logs: ExecutionLogger, start_time: float) -> None:
        execution.status = status
        execution.completed_at = utcnow()
        execution.duration_ms = int((time.monotonic() - start_time) * 1000)
        execution.logs = list(logs.entries)

    @staticmethod
    def _advance(task: ScheduledTask, now: datetime, ran: bool) -> None:
        task.run_count = (task.run_count or 0) + 1
        task.last_run_at = now
        task.updated_at = utcnow()
        if task.schedule_type == "one-time":
            if ran:
                task.status = "completed"
            task.next_run_at = None
        elif task.schedule_type == "recurring":
            task.next_run_at = calculate_next_run(task.schedule, now)

    def _handle_failure(self, task: ScheduledTask, error: Exception, now: datetime, logs: ExecutionLogger) -> None:
        task.failure_count = (task.failure_count or 0) + 1
        task.run_count = (task.run_count or 0) + 1
        task.last_run_at = now
        task.updated_at = utcnow()

        policy = RetryPolicy(**task.retry_policy) if task.retry_policy else None
        attempt = task.retry_attempt or 0
        if policy and attempt < policy.max_retries and _error_kind(error) in policy.retry_on:
            delay = retry_delay_ms(policy, attempt)
            task.retry_attempt = attempt + 1
            task.next_run_at = now + timedelta(milliseconds=delay)
            logs.log(f"Will retry ({attempt + 1}/{policy.max_retries}) in {delay}ms")
            logger.info("Scheduling retry %d of task %s in %dms", attempt + 1, task.id, delay)
            return

        task.status = "failed"
        task.next_run_at = None
        if policy:
            logger.warning("Max retries exceeded, marking task %s as failed", task.id)

    @staticmethod
    def _notify(task: ScheduledTask, event: str, detail: Any = None) -> None:
        config = task.notifications or {}
        wanted = {
            "start": config.get("on_start", False),
            "success": config.get("on_success", False),
            "failure": config.get("on_failure", False),
        }[event]
        if wanted and config.get("channels"):
            logger.info(
                "Sending %s notification for task %s via %s",
                event, task.id, ", ".join(config["channels"]),
            )


class SchedulerWorker:
    """Polls for due tasks on an interval, one batch at a time."""

    def __init__(self, session_factory, poll_interval: float = 60, executor: Optional[ActionExecutor] = None):
        self.session_factory = session_factory
        self.poll_interval = poll_interval
        self.executor = executor
        self._task: Optional[asyncio.Task] = None

    async def poll_once(self) -> int:
        async with self.session_factory() as db:
            executions = await TaskScheduler(db, executor=self.executor).run_due_tasks()
        return len(executions)

    async def _run(self) -> None:
        while True:
            try:
                await self.poll_once()
            except (StorageError, SQLAlchemyError) as e:
                logger.error("Error in poll cycle: %s", e)
            await asyncio.sleep(self.poll_interval)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())
            logger.info("Task scheduler started (poll interval %ss)", self.poll_interval)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Task scheduler stopped")
