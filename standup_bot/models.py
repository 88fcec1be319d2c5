# Standup Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Data models for check-ins, standups and their Slack representation.

This module defines Pydantic models for the records kept in the record
store, the transient standup session, bot configuration and the Slack
messages the bot sends. All models use Pydantic v2 for validation.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, ConfigDict


NOT_APPLICABLE = "N/A"
DEFAULT_SCORE = 3
DEFAULT_TIME_ESTIMATES = ["1-2h", "2-3h", "3-4h", "4h+"]
DEFAULT_TIMEZONE = "Asia/Kathmandu"

CivilDate = date


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class Feeling(str, Enum):
    """How the user feels when submitting a standup."""
    GREAT = "great"
    GOOD = "good"
    OKAY = "okay"
    TIRED = "tired"
    STRESSED = "stressed"


class CheckInType(str, Enum):
    """Kind of attendance event."""
    CHECK_IN = "checkin"
    CHECK_OUT = "checkout"


class FlowStep(str, Enum):
    """Steps of the multi-step standup form, in order."""
    FEELING = "feeling"
    YESTERDAY = "yesterday"
    TODAY = "today"
    BLOCKERS = "blockers"
    COMPLETE = "complete"


class TaskEntry(BaseModel):
    """
    One unit of reported work.

    Immutable once created; a ticket left blank is stored as "N/A".
    """
    model_config = ConfigDict(frozen=True)

    project: str = Field(..., min_length=1, description="Project the task belongs to")
    ticket_number: str = Field(default=NOT_APPLICABLE, description="Ticket reference")
    title: str = Field(..., min_length=1, description="Task title, may be multi-line")
    estimated_time: str = Field(..., min_length=1, description="Time estimate label, e.g. '2-3h'")
    confidence_score: int = Field(default=DEFAULT_SCORE, ge=1, le=5)
    difficulty_level: int = Field(default=DEFAULT_SCORE, ge=1, le=5)

    @field_validator('project', 'title')
    @classmethod
    def strip_required_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError('Field cannot be blank')
        return v

    @field_validator('ticket_number', mode='before')
    @classmethod
    def default_ticket(cls, v: Optional[str]) -> str:
        """Blank ticket references become the "N/A" sentinel."""
        if v is None or not str(v).strip():
            return NOT_APPLICABLE
        return str(v).strip()


class TaskFormData(BaseModel):
    """
    Raw task form values as submitted, before validation.

    Every field is optional text; the standup flow turns it into a TaskEntry.
    """
    project: Optional[str] = None
    ticket_number: Optional[str] = None
    title: Optional[str] = None
    estimated_time: Optional[str] = None
    confidence_score: Optional[str] = None
    difficulty_level: Optional[str] = None

    def is_empty(self) -> bool:
        """True when no task field carries a value."""
        return not any(
            value is not None and str(value).strip()
            for value in self.model_dump().values()
        )


class StandupSession(BaseModel):
    """
    In-progress standup for one user.

    Lives in the flow state store until the standup is finalized,
    cancelled or swept for inactivity.
    """
    model_config = ConfigDict(frozen=False)

    user_id: str
    display_name: str
    step: FlowStep = FlowStep.FEELING
    feeling: Optional[Feeling] = None
    yesterday: List[TaskEntry] = Field(default_factory=list)
    today: List[TaskEntry] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utcnow)
    last_activity_at: datetime = Field(default_factory=utcnow)

    def tasks_for(self, step: FlowStep) -> List[TaskEntry]:
        """Task list collected at the given step."""
        if step == FlowStep.YESTERDAY:
            return self.yesterday
        if step == FlowStep.TODAY:
            return self.today
        raise ValueError(f"Step {step.value} does not collect tasks")


class StandupRecord(BaseModel):
    """
    Persisted result of a completed standup.

    Append-only. `date` is the civil date of submission and, together with
    `user_id`, answers "did this user already submit today". `created_at`
    is assigned by the record store.
    """
    model_config = ConfigDict(frozen=False)

    id: Optional[str] = None
    user_id: str
    user_name: str
    feeling: Feeling
    yesterday: List[TaskEntry] = Field(default_factory=list)
    today: List[TaskEntry] = Field(default_factory=list)
    blockers: str = ""
    date: CivilDate
    created_at: Optional[datetime] = None

    def projects(self) -> List[str]:
        """Distinct projects referenced by the record, in first-seen order."""
        seen: List[str] = []
        for task in [*self.yesterday, *self.today]:
            if task.project not in seen:
                seen.append(task.project)
        return seen

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude={"id", "created_at"})


class CheckInRecord(BaseModel):
    """Attendance log entry. Append-only; timestamp assigned by the store."""
    model_config = ConfigDict(frozen=False)

    id: Optional[str] = None
    user_id: str
    user_name: str
    user_email: str = ""
    type: CheckInType
    standup_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude={"id", "created_at"})


class ProjectChannel(BaseModel):
    """Routing entry from a project to the channel that receives its standups."""
    model_config = ConfigDict(frozen=False)

    id: Optional[str] = None
    project_name: str = Field(..., min_length=1)
    channel_id: str = Field(..., description="Slack channel ID (e.g., 'C12345')")
    channel_name: str
    is_active: bool = True

    @field_validator('channel_id')
    @classmethod
    def validate_channel(cls, v: str) -> str:
        if not v.startswith(('C', 'G')):
            raise ValueError('Channel ID must start with "C" or "G"')
        return v

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude={"id"})


class BotConfig(BaseModel):
    """Global bot settings, stored as the singleton botConfig/default."""
    model_config = ConfigDict(frozen=False)

    id: str = "default"
    projects: List[str] = Field(default_factory=list)
    time_estimates: List[str] = Field(default_factory=lambda: list(DEFAULT_TIME_ESTIMATES))
    require_standup_on_check_in: bool = True
    standup_reminder_time: Optional[str] = Field(
        default=None,
        pattern=r"^([0-1][0-9]|2[0-3]):[0-5][0-9]$"
    )
    timezone: str = DEFAULT_TIMEZONE


class UserPreferences(BaseModel):
    """Per-user preferences."""
    model_config = ConfigDict(frozen=False)

    user_id: str
    default_project: Optional[str] = None
    timezone: Optional[str] = None
    notifications_enabled: bool = True


class UserStats(BaseModel):
    """Check-in counts over a trailing window."""
    total_check_ins: int = 0
    total_check_outs: int = 0
    days_tracked: int = 30


class SlackMessage(BaseModel):
    """
    Represents a Slack message to be sent.

    Encapsulates Block Kit blocks, fallback text and threading information.
    """
    model_config = ConfigDict(frozen=False)

    blocks: List[Dict[str, Any]] = Field(
        default_factory=list,
        description="Block Kit blocks for rich message formatting"
    )
    text: str = Field(
        ...,
        description="Fallback text for notifications and accessibility"
    )
    thread_ts: Optional[str] = Field(
        default=None,
        description="Thread timestamp for threaded replies"
    )

    @field_validator('text')
    @classmethod
    def validate_text_not_empty(cls, v: str) -> str:
        """Ensure fallback text is not empty."""
        if not v or not v.strip():
            raise ValueError('Fallback text cannot be empty')
        return v

    @field_validator('blocks')
    @classmethod
    def validate_blocks_structure(cls, v: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Validate basic block structure."""
        for block in v:
            if 'type' not in block:
                raise ValueError('Each block must have a "type" field')
        return v


class SlashCommand(BaseModel):
    """
    Represents a slash command invocation.

    Captures the parts of a Slack command payload the dispatcher needs.
    """
    model_config = ConfigDict(frozen=False)

    command: str
    text: str = ""
    user_id: str
    user_name: str = ""
    channel_id: str = ""
    trigger_id: str = ""

    @field_validator('command')
    @classmethod
    def validate_command_format(cls, v: str) -> str:
        """Ensure command starts with /."""
        if not v.startswith('/'):
            raise ValueError('Command must start with /')
        return v

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "SlashCommand":
        return cls(
            command=payload.get("command", ""),
            text=payload.get("text") or "",
            user_id=payload.get("user_id", ""),
            user_name=payload.get("user_name") or "",
            channel_id=payload.get("channel_id") or "",
            trigger_id=payload.get("trigger_id") or "",
        )
