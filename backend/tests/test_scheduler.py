"""
Tests for schedule calculation, task storage and task execution.
"""

from datetime import datetime, timedelta, timezone

import pytest

from mission_control.schemas.task import TaskCreate, TaskFilters, TaskUpdate
from mission_control.services.scheduler_service import (
    SchedulerWorker,
    TaskScheduler,
    as_utc,
    calculate_next_run,
    recurring_to_cron,
    retry_delay_ms,
    validate_task,
)
from mission_control.services.task_actions import ActionExecutor, ExecutionLogger, TaskActionError, check_conditions

from conftest import FakeLLM, FakeResponse, FakeSession

UTC = timezone.utc


def _task(**overrides):
    data = {
        "name": "Morning digest",
        "type": "one-time",
        "schedule": {"type": "one-time", "run_at": "2026-01-01T08:00:00Z"},
        "action": {"type": "ai-prompt", "prompt": "Summarize the news"},
    }
    data.update(overrides)
    return TaskCreate(**data)


@pytest.fixture
def llm():
    return FakeLLM(replies=["digest ready"] * 5)


@pytest.fixture
def scheduler(db, llm):
    return TaskScheduler(db, executor=ActionExecutor(llm=llm))


# Schedule calculation

@pytest.mark.parametrize("schedule,expected", [
    ({"interval": "hourly", "time": "09:15"}, "15 * * * *"),
    ({"interval": "daily", "time": "09:30"}, "30 9 * * *"),
    ({"interval": "daily"}, "0 0 * * *"),
    ({"interval": "weekly", "time": "18:00", "day_of_week": 0}, "0 18 * * 0"),
    ({"interval": "weekly"}, "0 0 * * 1"),
    ({"interval": "monthly", "time": "06:05", "day_of_month": 15}, "5 6 15 * *"),
])
def test_recurring_to_cron(schedule, expected):
    assert recurring_to_cron(schedule) == expected


def test_recurring_to_cron_rejects_unknown_interval():
    with pytest.raises(ValueError):
        recurring_to_cron({"interval": "yearly"})


def test_next_run_for_one_time():
    schedule = {"type": "one-time", "run_at": "2026-03-01T10:00:00Z"}
    assert calculate_next_run(schedule, datetime(2026, 2, 1, tzinfo=UTC)) == datetime(2026, 3, 1, 10, tzinfo=UTC)
    assert calculate_next_run(schedule, datetime(2026, 3, 2, tzinfo=UTC)) is None


def test_next_run_for_cron_is_strictly_after():
    schedule = {"type": "cron", "expression": "0 9 * * *"}
    after = datetime(2026, 5, 4, 9, 0, tzinfo=UTC)
    assert calculate_next_run(schedule, after) == datetime(2026, 5, 5, 9, 0, tzinfo=UTC)


def test_next_run_honours_timezone():
    schedule = {"type": "recurring", "interval": "daily", "time": "09:00", "timezone": "America/New_York"}
    after = datetime(2026, 7, 1, 12, 0, tzinfo=UTC)
    # 09:00 EDT is 13:00 UTC
    assert calculate_next_run(schedule, after) == datetime(2026, 7, 1, 13, 0, tzinfo=UTC)


def test_monthly_day_31_skips_short_months():
    schedule = {"type": "recurring", "interval": "monthly", "day_of_month": 31}
    after = datetime(2026, 4, 1, tzinfo=UTC)
    assert calculate_next_run(schedule, after) == datetime(2026, 5, 31, tzinfo=UTC)


def test_next_run_without_time_component():
    assert calculate_next_run(None) is None
    assert calculate_next_run({"type": "trigger"}) is None


def test_retry_delay_backs_off_and_caps():
    policy = {"max_retries": 5, "backoff_ms": 1000, "backoff_multiplier": 2, "max_backoff_ms": 5000}
    assert [retry_delay_ms(policy, n) for n in range(4)] == [1000, 2000, 4000, 5000]


def test_validate_task_messages():
    with pytest.raises(ValueError, match="run_at"):
        validate_task("one-time", {"type": "cron", "expression": "* * * * *"}, None)
    with pytest.raises(ValueError, match="interval or a cron"):
        validate_task("recurring", None, None)
    with pytest.raises(ValueError, match="trigger configuration"):
        validate_task("trigger", None, None)
    with pytest.raises(ValueError, match="Invalid cron"):
        validate_task("recurring", {"type": "cron", "expression": "every day"}, None)
    with pytest.raises(ValueError, match="Unknown timezone"):
        validate_task("recurring", {"type": "cron", "expression": "0 * * * *", "timezone": "Mars/Base"}, None)


def test_as_utc_treats_naive_values_as_utc():
    assert as_utc(datetime(2026, 1, 1, 12)) == datetime(2026, 1, 1, 12, tzinfo=UTC)
    assert as_utc(None) is None


# Conditions

def test_check_conditions():
    context = {
        "now": datetime(2026, 6, 7, 14, 30, tzinfo=UTC),  # a Sunday
        "variables": {"env": {"name": "prod"}, "count": "12"},
        "previous_result": {"response": "all systems nominal"},
    }
    assert check_conditions([], context)
    assert check_conditions([{"type": "time", "field": "hour", "operator": "equals", "value": 14}], context)
    assert check_conditions([{"type": "time", "field": "weekday", "operator": "equals", "value": 0}], context)
    assert check_conditions([{"type": "variable", "field": "env.name", "operator": "equals", "value": "prod"}], context)
    assert check_conditions([{"type": "variable", "field": "count", "operator": "greater", "value": 10}], context)
    assert check_conditions([{"type": "variable", "field": "missing", "operator": "not-exists"}], context)
    assert check_conditions(
        [{"type": "previous-result", "field": "response", "operator": "contains", "value": "nominal"}], context
    )
    assert not check_conditions([
        {"type": "variable", "field": "env.name", "operator": "equals", "value": "prod"},
        {"type": "variable", "field": "count", "operator": "less", "value": 5},
    ], context)
    assert not check_conditions([{"type": "variable", "field": "env", "operator": "greater", "value": 1}], context)


# Storage

async def test_create_task_sets_first_run(scheduler):
    task = await scheduler.create_task(_task(tags=["news"]), user_id="alice")

    assert task.status == "active"
    assert task.schedule_type == "one-time"
    assert as_utc(task.next_run_at) == datetime(2026, 1, 1, 8, tzinfo=UTC)
    assert task.tags == ["news"]


async def test_create_recurring_task(scheduler):
    task = await scheduler.create_task(_task(
        type="recurring", schedule={"type": "cron", "expression": "*/5 * * * *"}
    ))
    assert as_utc(task.next_run_at) > datetime.now(UTC)


async def test_create_task_rejects_bad_schedule(scheduler):
    with pytest.raises(ValueError):
        await scheduler.create_task(_task(type="recurring", schedule=None))


async def test_list_and_filter_tasks(scheduler):
    await scheduler.create_task(_task(name="Digest", tags=["news"], category="reports"), user_id="alice")
    await scheduler.create_task(_task(name="Ping", action={"type": "webhook", "url": "https://x"}), user_id="alice")
    await scheduler.create_task(_task(name="Other"), user_id="bob")

    assert {t.name for t in await scheduler.list_tasks("alice")} == {"Digest", "Ping"}
    assert [t.name for t in await scheduler.list_tasks("alice", TaskFilters(tags=["news"]))] == ["Digest"]
    assert [t.name for t in await scheduler.list_tasks("alice", TaskFilters(search="pin"))] == ["Ping"]
    assert [t.name for t in await scheduler.list_tasks("alice", TaskFilters(category="reports"))] == ["Digest"]
    assert await scheduler.list_tasks("alice", TaskFilters(has_errors=True)) == []
    assert len(await scheduler.list_tasks()) == 3


async def test_update_task(scheduler):
    task = await scheduler.create_task(_task())

    updated = await scheduler.update_task(task.id, TaskUpdate(
        name="Evening digest",
        schedule={"type": "one-time", "run_at": "2026-01-01T20:00:00Z"},
        notification={"on_success": True, "channels": ["email"]},
    ))

    assert updated.name == "Evening digest"
    assert as_utc(updated.next_run_at) == datetime(2026, 1, 1, 20, tzinfo=UTC)
    assert updated.notifications["channels"] == ["email"]
    with pytest.raises(ValueError, match="No fields"):
        await scheduler.update_task(task.id, TaskUpdate())


async def test_pause_and_resume(scheduler):
    task = await scheduler.create_task(_task(
        type="recurring", schedule={"type": "recurring", "interval": "daily", "time": "07:00"}
    ))

    paused = await scheduler.pause_task(task.id)
    assert paused.status == "paused"
    assert paused.paused_at is not None
    assert await scheduler.get_upcoming_tasks() == []

    resumed = await scheduler.resume_task(task.id)
    assert resumed.status == "active"
    assert resumed.paused_at is None
    assert resumed.next_run_at is not None
    assert [t.id for t in await scheduler.get_upcoming_tasks()] == [task.id]


async def test_delete_task_removes_executions(scheduler):
    task = await scheduler.create_task(_task())
    await scheduler.run_now(task.id)

    await scheduler.delete_task(task.id)

    assert await scheduler.get_task(task.id) is None
    assert await scheduler.get_executions(task.id) == []


# Execution

async def test_due_one_time_task_completes(scheduler, llm):
    task = await scheduler.create_task(_task())

    executions = await scheduler.run_due_tasks(datetime(2026, 1, 1, 9, tzinfo=UTC))

    assert len(executions) == 1
    execution = executions[0]
    assert execution.status == "completed"
    assert execution.triggered_by == "schedule"
    assert execution.result["response"] == "digest ready"
    assert execution.output == "digest ready"
    assert any("Task completed successfully" in entry["message"] for entry in execution.logs)
    assert llm.calls[0]["history"] == [{"role": "user", "content": "Summarize the news"}]

    task = await scheduler.get_task(task.id)
    assert task.status == "completed"
    assert task.next_run_at is None
    assert task.run_count == 1
    assert task.success_count == 1


async def test_tasks_not_yet_due_are_left_alone(scheduler):
    await scheduler.create_task(_task())
    assert await scheduler.run_due_tasks(datetime(2025, 12, 31, tzinfo=UTC)) == []


async def test_recurring_task_is_rescheduled(scheduler):
    task = await scheduler.create_task(_task(
        type="recurring", schedule={"type": "cron", "expression": "0 * * * *"}
    ))
    now = as_utc(task.next_run_at) + timedelta(minutes=1)

    await scheduler.run_due_tasks(now)

    task = await scheduler.get_task(task.id)
    assert task.status == "active"
    assert as_utc(task.next_run_at) == now.replace(minute=0) + timedelta(hours=1)


async def test_failure_is_retried_then_marked_failed(scheduler):
    task = await scheduler.create_task(_task(
        action={"type": "send-email", "to": "ops@example.com", "subject": "s", "body": "b"},
        retry_policy={"max_retries": 1, "backoff_ms": 1000},
    ))
    now = datetime(2026, 1, 1, 9, tzinfo=UTC)

    first = (await scheduler.run_due_tasks(now))[0]
    assert first.status == "failed"
    assert first.error == "Email sender not configured"
    task = await scheduler.get_task(task.id)
    assert task.status == "active"
    assert task.retry_attempt == 1
    assert as_utc(task.next_run_at) == now + timedelta(seconds=1)

    second = (await scheduler.run_due_tasks(now + timedelta(seconds=2)))[0]
    assert second.triggered_by == "retry"
    assert second.retry_attempt == 1
    task = await scheduler.get_task(task.id)
    assert task.status == "failed"
    assert task.next_run_at is None
    assert task.failure_count == 2


async def test_failure_without_retry_policy_fails_task(scheduler):
    task = await scheduler.create_task(_task(action={"type": "run-code", "language": "python", "code": "1"}))
    await scheduler.run_due_tasks(datetime(2026, 1, 2, tzinfo=UTC))
    assert (await scheduler.get_task(task.id)).status == "failed"


async def test_unmet_conditions_skip_the_action(scheduler, llm):
    task = await scheduler.create_task(_task(
        conditions=[{"type": "variable", "field": "enabled", "operator": "equals", "value": True}]
    ))

    execution = (await scheduler.run_due_tasks(datetime(2026, 1, 1, 9, tzinfo=UTC)))[0]

    assert execution.status == "completed"
    assert execution.result is None
    assert llm.calls == []
    task = await scheduler.get_task(task.id)
    assert task.status == "active"
    assert task.next_run_at is None


async def test_run_now_passes_variables(scheduler, llm):
    task = await scheduler.create_task(_task(
        conditions=[{"type": "variable", "field": "enabled", "operator": "equals", "value": True}]
    ))

    execution = await scheduler.run_now(task.id, variables={"enabled": True})

    assert execution.triggered_by == "manual"
    assert execution.status == "completed"
    assert len(llm.calls) == 1
    assert [e.id for e in await scheduler.get_executions(task.id)] == [execution.id]


async def test_worker_poll_once(session_factory, llm):
    async with session_factory() as db:
        await TaskScheduler(db).create_task(_task())

    worker = SchedulerWorker(session_factory, poll_interval=1, executor=ActionExecutor(llm=llm))
    assert await worker.poll_once() == 1
    assert await worker.poll_once() == 0


# Actions

async def test_webhook_action():
    session = FakeSession([FakeResponse(201, {"id": 7})])
    executor = ActionExecutor(session=session)

    result = await executor.execute(
        {"type": "webhook", "url": "https://hooks.example.com/run", "method": "PUT", "body": {"a": 1},
         "headers": {"X-Token": "t"}},
        ExecutionLogger(),
    )

    assert result == {"status": 201, "data": {"id": 7}}
    request = session.requests[0]
    assert request["method"] == "PUT"
    assert request["data"] == '{"a": 1}'
    assert request["headers"]["X-Token"] == "t"


async def test_webhook_rate_limit_error_kind():
    executor = ActionExecutor(session=FakeSession([FakeResponse(429, {"error": "slow"})]))
    with pytest.raises(TaskActionError) as exc_info:
        await executor.execute({"type": "webhook", "url": "https://x"}, ExecutionLogger())
    assert exc_info.value.kind == "rate-limit"


async def test_chain_continue_on_error(llm):
    executor = ActionExecutor(llm=llm)
    logs = ExecutionLogger()

    result = await executor.execute({
        "type": "chain",
        "continue_on_error": True,
        "tasks": [
            {"type": "send-email", "to": "a", "subject": "s", "body": "b"},
            {"type": "ai-prompt", "prompt": "hi"},
        ],
    }, logs)

    assert result["chain_length"] == 2
    assert result["results"][0]["error"] == "Email sender not configured"
    assert result["results"][1]["result"]["response"] == "digest ready"
    assert any(entry["level"] == "warn" for entry in logs.entries)


async def test_chain_stops_on_error_by_default(llm):
    executor = ActionExecutor(llm=llm)
    with pytest.raises(TaskActionError):
        await executor.execute({
            "type": "chain",
            "tasks": [{"type": "file-operation"}, {"type": "ai-prompt", "prompt": "hi"}],
        }, ExecutionLogger())
    assert llm.calls == []
