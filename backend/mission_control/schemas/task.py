"""
Scheduled task schemas.

Schedules and actions are tagged unions keyed on ``type`` and are stored on
the task row as JSON.
"""

from pydantic import AliasChoices, BaseModel, Field
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from datetime import datetime


TaskType = Literal["one-time", "recurring", "trigger"]
TaskStatus = Literal["pending", "active", "paused", "running", "completed", "failed", "cancelled"]
ExecutionStatus = Literal["queued", "running", "completed", "failed", "cancelled", "timeout"]
TriggeredBy = Literal["schedule", "manual", "trigger", "retry"]
Priority = Literal["low", "normal", "high", "critical"]
NotificationChannel = Literal["email", "webhook", "push", "slack", "sms"]


# Schedules

class OneTimeSchedule(BaseModel):
    type: Literal["one-time"] = "one-time"
    run_at: datetime
    timezone: Optional[str] = None


class RecurringSchedule(BaseModel):
    type: Literal["recurring"] = "recurring"
    interval: Literal["hourly", "daily", "weekly", "monthly"]
    time: Optional[str] = Field(None, pattern=r"^([01]\d|2[0-3]):[0-5]\d$")  # HH:mm
    day_of_week: Optional[int] = Field(None, ge=0, le=6)  # 0 = Sunday
    day_of_month: Optional[int] = Field(None, ge=1, le=31)
    timezone: Optional[str] = None


class CronSchedule(BaseModel):
    type: Literal["cron"] = "cron"
    expression: str
    timezone: Optional[str] = None


TaskSchedule = Annotated[
    Union[OneTimeSchedule, RecurringSchedule, CronSchedule],
    Field(discriminator="type"),
]


# Actions

class AIPromptAction(BaseModel):
    type: Literal["ai-prompt"] = "ai-prompt"
    prompt: str
    model: Optional[str] = None
    persona: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    system_prompt: Optional[str] = None


class SendEmailAction(BaseModel):
    type: Literal["send-email"] = "send-email"
    to: Union[str, List[str]]
    cc: Optional[Union[str, List[str]]] = None
    bcc: Optional[Union[str, List[str]]] = None
    subject: str
    body: str
    is_html: bool = False
    attachments: List[str] = []


class WebhookAction(BaseModel):
    type: Literal["webhook"] = "webhook"
    url: str
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "POST"
    headers: Dict[str, str] = {}
    body: Optional[Any] = None
    timeout: Optional[int] = None  # milliseconds


class RunCodeAction(BaseModel):
    type: Literal["run-code"] = "run-code"
    language: Literal["python", "javascript", "typescript"]
    code: str
    dependencies: List[str] = []
    environment: Dict[str, str] = {}


class GenerateReportAction(BaseModel):
    type: Literal["generate-report"] = "generate-report"
    report_type: Literal["summary", "detailed", "analytics"]
    data_source: str
    format: Literal["pdf", "html", "markdown", "json"] = "markdown"
    template: Optional[str] = None


class WebScrapeAction(BaseModel):
    type: Literal["web-scrape"] = "web-scrape"
    url: str
    selector: Optional[str] = None
    extract_type: Literal["text", "html", "links", "images", "structured"] = "text"
    wait_for_selector: Optional[str] = None
    javascript: bool = False


class FileOperationAction(BaseModel):
    type: Literal["file-operation"] = "file-operation"
    operation: Literal["read", "write", "append", "delete", "copy", "move"]
    source_path: str
    destination_path: Optional[str] = None
    content: Optional[str] = None


class GoogleWorkspaceAction(BaseModel):
    type: Literal["google-workspace"] = "google-workspace"
    service: Literal["gmail", "calendar", "drive", "sheets", "docs"]
    action: str
    params: Dict[str, Any] = {}


class ChainAction(BaseModel):
    type: Literal["chain"] = "chain"
    tasks: List["TaskAction"]
    continue_on_error: bool = False


TaskAction = Annotated[
    Union[
        AIPromptAction,
        SendEmailAction,
        WebhookAction,
        RunCodeAction,
        GenerateReportAction,
        WebScrapeAction,
        FileOperationAction,
        GoogleWorkspaceAction,
        ChainAction,
    ],
    Field(discriminator="type"),
]

ChainAction.model_rebuild()


# Policies

class TaskCondition(BaseModel):
    id: Optional[str] = None
    type: Literal["time", "variable", "api-response", "previous-result"]
    field: Optional[str] = None
    operator: Literal[
        "equals", "not-equals", "contains", "not-contains", "greater", "less", "exists", "not-exists"
    ]
    value: Any = None


class TaskNotification(BaseModel):
    on_success: bool = False
    on_failure: bool = True
    on_start: bool = False
    channels: List[NotificationChannel] = []
    recipients: List[str] = []
    webhook_url: Optional[str] = None
    slack_channel: Optional[str] = None


class RetryPolicy(BaseModel):
    max_retries: int = Field(3, ge=0)
    backoff_ms: int = Field(1000, ge=0)
    backoff_multiplier: float = Field(2.0, ge=1)
    max_backoff_ms: Optional[int] = Field(None, ge=0)
    retry_on: List[Literal["timeout", "error", "rate-limit"]] = ["timeout", "error", "rate-limit"]


class TaskTrigger(BaseModel):
    type: Literal["webhook", "email", "event", "file-change"]
    config: Dict[str, Any] = {}


# Requests / responses

class TaskCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    type: TaskType
    schedule: Optional[TaskSchedule] = None
    trigger: Optional[TaskTrigger] = None
    action: TaskAction
    conditions: List[TaskCondition] = []
    retry_policy: Optional[RetryPolicy] = None
    notification: Optional[TaskNotification] = None
    tags: List[str] = []
    category: Optional[str] = None
    priority: Priority = "normal"


class TaskUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    schedule: Optional[TaskSchedule] = None
    trigger: Optional[TaskTrigger] = None
    action: Optional[TaskAction] = None
    conditions: Optional[List[TaskCondition]] = None
    retry_policy: Optional[RetryPolicy] = None
    notification: Optional[TaskNotification] = None
    status: Optional[TaskStatus] = None
    tags: Optional[List[str]] = None
    category: Optional[str] = None
    priority: Optional[Priority] = None


class TaskFilters(BaseModel):
    status: Optional[List[TaskStatus]] = None
    type: Optional[List[TaskType]] = None
    search: Optional[str] = None
    tags: Optional[List[str]] = None
    category: Optional[str] = None
    has_errors: Optional[bool] = None


class TaskResponse(BaseModel):
    id: str
    user_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    type: str = Field(validation_alias=AliasChoices("schedule_type", "type"))
    schedule: Optional[Dict[str, Any]] = None
    trigger: Optional[Dict[str, Any]] = None
    action: Dict[str, Any]
    conditions: List[Dict[str, Any]] = []
    retry_policy: Optional[Dict[str, Any]] = None
    notification: Optional[Dict[str, Any]] = Field(None, validation_alias=AliasChoices("notifications", "notification"))
    status: str
    next_run_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    run_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    tags: List[str] = []
    category: Optional[str] = None
    priority: str = "normal"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ExecutionLog(BaseModel):
    timestamp: datetime
    level: Literal["debug", "info", "warn", "error"] = "info"
    message: str
    data: Optional[Any] = None


class TaskExecutionResponse(BaseModel):
    id: str
    task_id: str
    status: str
    triggered_by: str
    scheduled_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    result: Optional[Any] = None
    output: Optional[str] = None
    error: Optional[str] = None
    logs: List[ExecutionLog] = []
    cost: float = 0.0
    retry_attempt: int = 0

    class Config:
        from_attributes = True


class CronPreset(BaseModel):
    label: str
    value: str
    description: str
