# Standup Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Message formatter for Slack Block Kit messages.

This module provides the MessageFormatter class, a single entry point to
the templates plus helpers for common Block Kit structures and for
rendering times in the team's timezone.
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from standup_bot.logging_config import get_logger
from standup_bot.models import (
    CheckInRecord,
    CheckInType,
    FlowStep,
    SlackMessage,
    StandupRecord,
    TaskEntry,
    UserStats,
)
from standup_bot.templates import (
    AppHomeTemplate,
    AttendanceTemplate,
    BlockersFormTemplate,
    CheckInModalTemplate,
    CheckOutModalTemplate,
    ErrorTemplate,
    FeelingFormTemplate,
    QuickStandupTemplate,
    StandupConfirmationTemplate,
    StandupPromptTemplate,
    StandupSummaryTemplate,
    StatusTemplate,
    TaskFormTemplate,
)


logger = get_logger(__name__)


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    """ZoneInfo for an IANA name, falling back to UTC when unknown."""
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone, using UTC", extra={"timezone": name})
    return ZoneInfo("UTC")


def civil_date(now: datetime, tz_name: Optional[str]) -> date:
    """Calendar date of an instant in the given timezone."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(resolve_timezone(tz_name)).date()


class MessageFormatter:
    """
    Formats standup data into Slack views and messages.

    Wraps the templates so that callers depend on one object, and offers
    helpers for building ad hoc blocks.
    """

    def __init__(self, tz_name: Optional[str] = None):
        """
        Initialize message formatter.

        Args:
            tz_name: Default timezone for rendered times (UTC when unset)
        """
        self.tz_name = tz_name
        self.feeling_template = FeelingFormTemplate()
        self.task_template = TaskFormTemplate()
        self.blockers_template = BlockersFormTemplate()
        self.checkin_modal_template = CheckInModalTemplate()
        self.checkout_modal_template = CheckOutModalTemplate()
        self.quick_standup_template = QuickStandupTemplate()
        self.home_template = AppHomeTemplate()
        self.summary_template = StandupSummaryTemplate()
        self.confirmation_template = StandupConfirmationTemplate()
        self.attendance_template = AttendanceTemplate()
        self.prompt_template = StandupPromptTemplate()
        self.status_template = StatusTemplate()
        self.error_template = ErrorTemplate()

    # Helper methods for common block types

    def create_header_block(self, text: str) -> Dict[str, Any]:
        return {
            "type": "header",
            "text": {
                "type": "plain_text",
                "text": text[:150]  # Slack limit
            }
        }

    def create_section_block(self, text: str, markdown: bool = True) -> Dict[str, Any]:
        return {
            "type": "section",
            "text": {
                "type": "mrkdwn" if markdown else "plain_text",
                "text": text[:3000]  # Slack limit
            }
        }

    def create_context_block(self, elements: List[str]) -> Dict[str, Any]:
        return {
            "type": "context",
            "elements": [
                {"type": "mrkdwn", "text": element}
                for element in elements[:10]  # Slack limit
            ]
        }

    def format_text_message(self, text: str, context: Optional[str] = None) -> SlackMessage:
        """Plain notice rendered as a section, with optional context line."""
        blocks = [self.create_section_block(text)]
        if context:
            blocks.append(self.create_context_block([context]))
        return SlackMessage(blocks=blocks, text=text)

    # Times

    def format_time(self, moment: datetime, tz_name: Optional[str] = None) -> str:
        """Clock time such as '09:05 AM' in the given or default timezone."""
        return self._localize(moment, tz_name).strftime("%I:%M %p")

    def format_timestamp(self, moment: datetime, tz_name: Optional[str] = None) -> str:
        """Short date and time such as 'Oct 19, 09:05 AM'."""
        return self._localize(moment, tz_name).strftime("%b %d, %I:%M %p")

    def _localize(self, moment: datetime, tz_name: Optional[str]) -> datetime:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(resolve_timezone(tz_name or self.tz_name))

    # Standup flow forms

    def feeling_form(self, error: Optional[str] = None) -> Dict[str, Any]:
        return self.feeling_template.render(error=error)

    def task_form(
        self,
        which: FlowStep,
        projects: Sequence[str],
        time_estimates: Sequence[str],
        tasks: Sequence[TaskEntry] = (),
        error: Optional[str] = None
    ) -> Dict[str, Any]:
        return self.task_template.render(
            which=which,
            projects=projects,
            time_estimates=time_estimates,
            tasks=tasks,
            error=error
        )

    def blockers_form(self, yesterday_count: int, today_count: int) -> Dict[str, Any]:
        return self.blockers_template.render(yesterday_count=yesterday_count, today_count=today_count)

    def quick_standup_form(self, projects: Sequence[str]) -> Dict[str, Any]:
        return self.quick_standup_template.render(projects=projects)

    def checkin_form(self) -> Dict[str, Any]:
        return self.checkin_modal_template.render()

    def checkout_form(self) -> Dict[str, Any]:
        return self.checkout_modal_template.render()

    # Messages

    def format_standup_summary(self, record: StandupRecord) -> SlackMessage:
        return self.summary_template.render(record)

    def format_standup_confirmation(self, record: StandupRecord) -> SlackMessage:
        return self.confirmation_template.render(record)

    def format_attendance(
        self,
        user_name: str,
        kind: CheckInType,
        moment: datetime,
        note: Optional[str] = None,
        tz_name: Optional[str] = None
    ) -> SlackMessage:
        return self.attendance_template.render(
            user_name=user_name,
            kind=kind,
            time=self.format_time(moment, tz_name),
            note=note
        )

    def format_standup_prompt(self) -> SlackMessage:
        return self.prompt_template.render()

    def format_status(
        self,
        user_name: str,
        is_checked_in: bool,
        last_check_in: Optional[CheckInRecord],
        stats: Optional[UserStats],
        today_standup: Optional[StandupRecord],
        tz_name: Optional[str] = None
    ) -> SlackMessage:
        return self.status_template.render(
            user_name=user_name,
            is_checked_in=is_checked_in,
            last_activity=self._last_activity(last_check_in, tz_name),
            stats=stats,
            today_standup=today_standup
        )

    def format_app_home(
        self,
        user_name: str,
        now: datetime,
        is_checked_in: bool,
        last_check_in: Optional[CheckInRecord],
        stats: Optional[UserStats],
        today_standup: Optional[StandupRecord],
        tz_name: Optional[str] = None
    ) -> Dict[str, Any]:
        return self.home_template.render(
            user_name=user_name,
            current_time=self.format_time(now, tz_name),
            is_checked_in=is_checked_in,
            last_check_in=last_check_in,
            last_activity=self._last_activity(last_check_in, tz_name),
            stats=stats,
            today_standup=today_standup
        )

    def format_error_message(
        self,
        error_type: str,
        message: str,
        suggestion: Optional[str] = None
    ) -> SlackMessage:
        return self.error_template.render(error_type=error_type, message=message, suggestion=suggestion)

    def _last_activity(self, last_check_in: Optional[CheckInRecord], tz_name: Optional[str]) -> Optional[str]:
        if last_check_in is None or last_check_in.created_at is None:
            return None
        return self.format_timestamp(last_check_in.created_at, tz_name)
