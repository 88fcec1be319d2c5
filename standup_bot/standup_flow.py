# Standup Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Multi-step standup flow.

Walks one user through feeling -> yesterday's tasks -> today's tasks ->
blockers, one modal per step, keeping the answers in the flow state store
between Slack interactions. On the last step the standup is persisted,
the session is removed and the summary is distributed to project
channels.

Every operation returns a FlowOutcome telling the caller what to show
next: a view to render, field errors, the finished record, or that the
interaction no longer matches a live session and was abandoned.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set, Tuple, Union

from standup_bot.distribution import StandupDistributor
from standup_bot.flow_state import FlowStateStore
from standup_bot.form_gateway import FormGateway, FormGatewayError
from standup_bot.logging_config import get_logger
from standup_bot.message_formatter import MessageFormatter, civil_date
from standup_bot.models import (
    DEFAULT_SCORE,
    NOT_APPLICABLE,
    BotConfig,
    Feeling,
    FlowStep,
    StandupRecord,
    StandupSession,
    TaskEntry,
    TaskFormData,
    utcnow,
)
from standup_bot.repository import StandupRepository
from standup_bot.templates import TASK_FIELD_BLOCKS


logger = get_logger(__name__)


QUICK_STANDUP_ESTIMATE = "2-3h"

_NEXT_STEP = {
    FlowStep.YESTERDAY: FlowStep.TODAY,
    FlowStep.TODAY: FlowStep.BLOCKERS,
}


class FlowError(Exception):
    """Base exception for standup flow failures."""

    def __init__(self, message: str, user_id: Optional[str] = None):
        self.message = message
        self.user_id = user_id
        super().__init__(message)


class FlowAlreadyActiveError(FlowError):
    """A standup is already in progress for the user."""

    def __init__(self, user_id: str, step: FlowStep):
        self.step = step
        super().__init__(f"Standup already in progress (step: {step.value})", user_id)


class FlowNotFoundError(FlowError):
    """No session at the step an interaction expects."""


class FlowAction(str, Enum):
    RENDER = "render"
    ERRORS = "errors"
    COMPLETE = "complete"
    ABANDONED = "abandoned"


@dataclass
class FlowOutcome:
    """Result of a flow operation."""
    action: FlowAction
    step: Optional[FlowStep] = None
    view: Optional[Dict[str, Any]] = None
    view_id: Optional[str] = None
    errors: Dict[str, str] = field(default_factory=dict)
    record: Optional[StandupRecord] = None
    reason: Optional[str] = None

    @classmethod
    def render(cls, step: FlowStep, view: Dict[str, Any], view_id: Optional[str] = None) -> "FlowOutcome":
        return cls(action=FlowAction.RENDER, step=step, view=view, view_id=view_id)

    @classmethod
    def invalid(cls, step: FlowStep, errors: Dict[str, str]) -> "FlowOutcome":
        return cls(action=FlowAction.ERRORS, step=step, errors=errors)

    @classmethod
    def complete(cls, record: StandupRecord) -> "FlowOutcome":
        return cls(action=FlowAction.COMPLETE, step=FlowStep.COMPLETE, record=record)

    @classmethod
    def abandoned(cls, reason: str) -> "FlowOutcome":
        return cls(action=FlowAction.ABANDONED, reason=reason)


class StandupFlowService:
    """
    Orchestrates standup sessions.

    The service is the only writer of the flow state store. Sessions only
    move forward through the steps; a session is deleted when the standup
    is saved, when the user cancels, or when the sweep finds it idle for
    longer than the configured lifetime.
    """

    def __init__(
        self,
        state_store: FlowStateStore,
        repository: StandupRepository,
        gateway: FormGateway,
        distributor: StandupDistributor,
        formatter: Optional[MessageFormatter] = None,
        clock: Callable[[], datetime] = utcnow,
        fan_out_in_background: bool = False
    ):
        """
        Initialize the flow service.

        Args:
            state_store: Per-user session table
            repository: Access to bot config and standup persistence
            gateway: Presents forms and posts messages
            distributor: Posts finished standups to project channels
            formatter: Builds the step forms
            clock: Source of the current UTC time
            fan_out_in_background: Schedule distribution as a task instead of
                awaiting it, so the caller can answer Slack right away
        """
        self.state_store = state_store
        self.repository = repository
        self.gateway = gateway
        self.distributor = distributor
        self.formatter = formatter or MessageFormatter()
        self.clock = clock
        self.fan_out_in_background = fan_out_in_background
        self._fan_out_tasks: Set[asyncio.Task] = set()

    # Session lifecycle

    async def start_flow(
        self,
        user_id: str,
        display_name: str,
        trigger_id: str,
        replace_existing: bool = False
    ) -> FlowOutcome:
        """
        Create a session and open the feeling form.

        Raises:
            FlowAlreadyActiveError: If the user has a session and
                replace_existing is False
            FormGatewayError: If the form cannot be opened; the new
                session is discarded
        """
        existing = await self.state_store.get(user_id)
        if existing is not None and not replace_existing:
            raise FlowAlreadyActiveError(user_id, existing.step)

        if existing is not None:
            logger.info(
                "Replacing existing standup session",
                extra={"user_id": user_id, "step": existing.step.value}
            )

        now = self.clock()
        session = StandupSession(
            user_id=user_id,
            display_name=display_name,
            step=FlowStep.FEELING,
            started_at=now,
            last_activity_at=now
        )
        await self.state_store.set(session)

        view = self.formatter.feeling_form()
        try:
            view_id = await self.gateway.open(trigger_id, view)
        except FormGatewayError as e:
            await self.state_store.delete(user_id)
            logger.warning(
                "Could not open standup form, session discarded",
                extra={"user_id": user_id, "error": e.message, "slack_error": e.slack_error}
            )
            raise

        logger.info("Standup flow started", extra={"user_id": user_id, "view_id": view_id})
        return FlowOutcome.render(FlowStep.FEELING, view, view_id)

    async def cancel_flow(self, user_id: str) -> bool:
        """Remove the user's session, if any. Returns True if one existed."""
        removed = await self.state_store.delete(user_id)
        if removed:
            logger.info("Standup flow cancelled", extra={"user_id": user_id})
        return removed

    async def has_active_flow(self, user_id: str) -> bool:
        return await self.state_store.get(user_id) is not None

    async def sweep_expired_sessions(self, max_age_minutes: int = 60) -> int:
        """
        Remove sessions idle for longer than max_age_minutes.

        Idle time is measured from the session's last successful step.

        Returns:
            Number of sessions removed
        """
        cutoff = self.clock() - timedelta(minutes=max_age_minutes)
        removed = await self.state_store.remove_idle(cutoff)

        for session in removed:
            logger.info(
                "Expired standup session removed",
                extra={
                    "user_id": session.user_id,
                    "step": session.step.value,
                    "last_activity_at": session.last_activity_at.isoformat()
                }
            )

        if removed:
            logger.info("Session sweep finished", extra={"removed": len(removed)})
        return len(removed)

    # Steps

    async def submit_feeling(
        self,
        user_id: str,
        feeling: Optional[Union[str, Feeling]],
        view_id: Optional[str] = None
    ) -> FlowOutcome:
        """
        Record the feeling and move to yesterday's tasks.

        An empty or unknown feeling is reported as a field error and
        leaves the session untouched.
        """
        try:
            session = await self._load(user_id, FlowStep.FEELING)
        except FlowNotFoundError as e:
            return self._abandon(e)

        try:
            selected = Feeling(feeling) if feeling else None
        except ValueError:
            selected = None

        if selected is None:
            errors = {"feeling_selection": "Please select how you are feeling"}
            if view_id:
                await self._update(user_id, view_id, self.formatter.feeling_form(error=errors["feeling_selection"]))
            return FlowOutcome.invalid(FlowStep.FEELING, errors)

        session.feeling = selected
        session.step = FlowStep.YESTERDAY
        await self._save(session)

        config = await self.repository.get_bot_config()
        view = self.formatter.task_form(FlowStep.YESTERDAY, config.projects, config.time_estimates)
        if view_id:
            await self._update(user_id, view_id, view)

        logger.info("Feeling submitted", extra={"user_id": user_id, "feeling": selected.value})
        return FlowOutcome.render(FlowStep.YESTERDAY, view, view_id)

    async def submit_task(
        self,
        user_id: str,
        which: Union[str, FlowStep],
        form_data: Optional[TaskFormData],
        add_another: bool,
        view_id: Optional[str] = None
    ) -> FlowOutcome:
        """
        Add a task to yesterday's or today's list.

        With add_another the same step is shown again listing the tasks so
        far. Without it the flow moves to the next step; an empty form is
        then allowed and adds nothing.
        """
        which = FlowStep(which)
        if which not in _NEXT_STEP:
            raise ValueError(f"Step {which.value} does not collect tasks")

        try:
            session = await self._load(user_id, which)
        except FlowNotFoundError as e:
            return self._abandon(e)

        config = await self.repository.get_bot_config()
        tasks = session.tasks_for(which)

        has_input = form_data is not None and not form_data.is_empty()
        if has_input or add_another:
            entry, errors = self.build_task(form_data or TaskFormData(), config)
            if errors:
                if view_id:
                    view = self.formatter.task_form(
                        which, config.projects, config.time_estimates, tasks,
                        error=" ".join(errors.values())
                    )
                    await self._update(user_id, view_id, view)
                return FlowOutcome.invalid(which, errors)
            tasks.append(entry)

        if add_another:
            await self._save(session)
            view = self.formatter.task_form(which, config.projects, config.time_estimates, tasks)
            if view_id:
                await self._update(user_id, view_id, view)
            logger.info(
                "Task added",
                extra={"user_id": user_id, "step": which.value, "task_count": len(tasks)}
            )
            return FlowOutcome.render(which, view, view_id)

        next_step = _NEXT_STEP[which]
        session.step = next_step
        await self._save(session)

        if next_step == FlowStep.TODAY:
            view = self.formatter.task_form(FlowStep.TODAY, config.projects, config.time_estimates, session.today)
        else:
            view = self.formatter.blockers_form(len(session.yesterday), len(session.today))

        if view_id:
            await self._update(user_id, view_id, view)

        logger.info(
            "Task step finished",
            extra={"user_id": user_id, "step": which.value, "task_count": len(tasks)}
        )
        return FlowOutcome.render(next_step, view, view_id)

    async def finish_tasks(
        self,
        user_id: str,
        which: Union[str, FlowStep],
        view_id: Optional[str] = None
    ) -> FlowOutcome:
        """Move past a task step without adding a task."""
        return await self.submit_task(user_id, which, None, add_another=False, view_id=view_id)

    async def submit_blockers(self, user_id: str, blockers: Optional[str]) -> FlowOutcome:
        """
        Finalize the standup.

        The record is dated with the calendar date at submission in the
        configured timezone. The session is removed only once the record
        is stored.

        Raises:
            RecordStoreError: If the record cannot be stored; the session
                is kept so the user can submit again
        """
        try:
            session = await self._load(user_id, FlowStep.BLOCKERS)
        except FlowNotFoundError as e:
            return self._abandon(e)

        if session.feeling is None:
            await self.state_store.delete(user_id)
            return self._abandon(FlowNotFoundError("Session reached blockers without a feeling", user_id))

        config = await self.repository.get_bot_config()
        record = StandupRecord(
            user_id=session.user_id,
            user_name=session.display_name,
            feeling=session.feeling,
            yesterday=session.yesterday,
            today=session.today,
            blockers=blockers or "",
            date=civil_date(self.clock(), config.timezone)
        )

        await self.repository.save_standup(record)
        await self.state_store.delete(user_id)

        logger.info(
            "Standup completed",
            extra={
                "user_id": user_id,
                "record_id": record.id,
                "yesterday_count": len(record.yesterday),
                "today_count": len(record.today)
            }
        )

        await self._fan_out(record)
        return FlowOutcome.complete(record)

    async def submit_quick_standup(
        self,
        user_id: str,
        display_name: str,
        feeling: Optional[str],
        project: Optional[str],
        yesterday_summary: Optional[str],
        today_plan: Optional[str],
        blockers: Optional[str]
    ) -> FlowOutcome:
        """
        Save a one-page standup through the same persistence and
        distribution path as the multi-step flow.

        Each non-empty summary becomes a single task in the chosen project.

        Raises:
            RecordStoreError: If the record cannot be stored
        """
        config = await self.repository.get_bot_config()
        errors: Dict[str, str] = {}

        try:
            selected = Feeling(feeling) if feeling else None
        except ValueError:
            selected = None
        if selected is None:
            errors["feeling_selection"] = "Please select how you are feeling"

        project = (project or "").strip()
        if not project:
            errors["project_select"] = "Please select a project"
        elif config.projects and project not in config.projects:
            errors["project_select"] = f"Unknown project: {project}"

        if errors:
            return FlowOutcome.invalid(FlowStep.FEELING, errors)

        def summary_task(text: Optional[str]):
            if not text or not text.strip():
                return []
            return [TaskEntry(
                project=project,
                ticket_number=NOT_APPLICABLE,
                title=text,
                estimated_time=QUICK_STANDUP_ESTIMATE,
                confidence_score=DEFAULT_SCORE,
                difficulty_level=DEFAULT_SCORE
            )]

        record = StandupRecord(
            user_id=user_id,
            user_name=display_name,
            feeling=selected,
            yesterday=summary_task(yesterday_summary),
            today=summary_task(today_plan),
            blockers=blockers or "",
            date=civil_date(self.clock(), config.timezone)
        )

        await self.repository.save_standup(record)
        logger.info("Quick standup completed", extra={"user_id": user_id, "record_id": record.id})

        await self._fan_out(record)
        return FlowOutcome.complete(record)

    async def drain(self) -> None:
        """Wait for distribution tasks still running in the background."""
        if not self._fan_out_tasks:
            return

        results = await asyncio.gather(*self._fan_out_tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                logger.error("Background distribution failed", extra={"error": str(result) or type(result).__name__})

    # Validation

    def build_task(self, form_data: TaskFormData, config: BotConfig) -> Tuple[Optional[TaskEntry], Dict[str, str]]:
        """
        Turn raw form values into a TaskEntry.

        Returns the entry, or None and field errors keyed by form block ID.
        A blank ticket becomes "N/A"; a missing score defaults to 3.
        """
        errors: Dict[str, str] = {}

        project = (form_data.project or "").strip()
        if not project:
            errors[TASK_FIELD_BLOCKS["project"]] = "Please select a project"
        elif config.projects and project not in config.projects:
            errors[TASK_FIELD_BLOCKS["project"]] = f"Unknown project: {project}"

        title = (form_data.title or "").strip()
        if not title:
            errors[TASK_FIELD_BLOCKS["title"]] = "Please enter a task title"

        estimate = (form_data.estimated_time or "").strip()
        if not estimate:
            errors[TASK_FIELD_BLOCKS["estimated_time"]] = "Please select an estimated time"
        elif config.time_estimates and estimate not in config.time_estimates:
            errors[TASK_FIELD_BLOCKS["estimated_time"]] = f"Unknown time estimate: {estimate}"

        scores = {}
        for name in ("confidence_score", "difficulty_level"):
            raw = getattr(form_data, name)
            if raw is None or not str(raw).strip():
                scores[name] = DEFAULT_SCORE
                continue
            try:
                value = int(str(raw).strip())
            except ValueError:
                value = 0
            if not 1 <= value <= 5:
                errors[TASK_FIELD_BLOCKS[name]] = "Choose a value from 1 to 5"
            scores[name] = value

        if errors:
            return None, errors

        entry = TaskEntry(
            project=project,
            ticket_number=form_data.ticket_number,
            title=title,
            estimated_time=estimate,
            confidence_score=scores["confidence_score"],
            difficulty_level=scores["difficulty_level"]
        )
        return entry, {}

    # Internals

    async def _load(self, user_id: str, expected: FlowStep) -> StandupSession:
        session = await self.state_store.get(user_id)
        if session is None:
            raise FlowNotFoundError(f"No active standup for {expected.value} step", user_id)
        if session.step != expected:
            raise FlowNotFoundError(
                f"Stale {expected.value} interaction, session is at {session.step.value}",
                user_id
            )
        return session

    async def _save(self, session: StandupSession) -> None:
        session.last_activity_at = self.clock()
        await self.state_store.set(session)

    async def _update(self, user_id: str, view_id: str, view: Dict[str, Any]) -> None:
        try:
            await self.gateway.update(view_id, view)
        except FormGatewayError as e:
            logger.warning(
                "Could not update standup form",
                extra={"user_id": user_id, "view_id": view_id, "error": e.message}
            )

    def _abandon(self, error: FlowNotFoundError) -> FlowOutcome:
        logger.warning("Standup interaction abandoned", extra={"user_id": error.user_id, "reason": error.message})
        return FlowOutcome.abandoned(error.message)

    async def _fan_out(self, record: StandupRecord) -> None:
        if not self.fan_out_in_background:
            await self.distributor.distribute(record)
            return

        task = asyncio.create_task(self.distributor.distribute(record))
        self._fan_out_tasks.add(task)
        task.add_done_callback(self._fan_out_tasks.discard)
