# Standup Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Block Kit templates for the standup bot.

View templates render modal and App Home payloads (plain dicts passed to
views.open / views.update / views.publish). Message templates render
SlackMessage objects for channel posts and direct messages.
"""

import json
from typing import Any, Dict, List, Optional, Protocol, Sequence

from standup_bot.models import (
    CheckInRecord,
    CheckInType,
    Feeling,
    FlowStep,
    SlackMessage,
    StandupRecord,
    TaskEntry,
    UserStats,
)


# Modal callback IDs
FEELING_CALLBACK = "standup_feeling_submit"
TASK_CALLBACKS = {
    FlowStep.YESTERDAY: "task_entry_yesterday",
    FlowStep.TODAY: "task_entry_today",
}
BLOCKERS_CALLBACK = "blockers_submit"
CHECKIN_MODAL_CALLBACK = "checkin_modal_submit"
CHECKOUT_MODAL_CALLBACK = "checkout_modal_submit"
QUICK_STANDUP_CALLBACK = "quick_standup_submit"

# Action IDs
TASK_DONE_ACTIONS = {
    FlowStep.YESTERDAY: "task_done_yesterday",
    FlowStep.TODAY: "task_done_today",
}
HOME_CHECKIN_ACTION = "home_checkin"
HOME_CHECKOUT_ACTION = "home_checkout"
HOME_STANDUP_ACTION = "home_start_standup"
STANDUP_AFTER_CHECKIN_ACTION = "trigger_standup_after_checkin"

# Task form block IDs, also the keys of validation errors
TASK_FIELD_BLOCKS = {
    "project": "project",
    "ticket_number": "ticket_number",
    "title": "task_title",
    "estimated_time": "estimated_time",
    "confidence_score": "confidence_score",
    "difficulty_level": "difficulty_level",
}

FEELING_EMOJI = {
    Feeling.GREAT: "😄",
    Feeling.GOOD: "🙂",
    Feeling.OKAY: "😐",
    Feeling.TIRED: "😓",
    Feeling.STRESSED: "😰",
}
DEFAULT_FEELING_EMOJI = "🙂"


def feeling_emoji(feeling: Any) -> str:
    """Emoji for a feeling; unknown values get the default."""
    try:
        return FEELING_EMOJI[Feeling(feeling)]
    except ValueError:
        return DEFAULT_FEELING_EMOJI


def format_task(task: TaskEntry, index: int) -> str:
    """One task as mrkdwn: title, project, ticket, estimate, stars and flames."""
    stars = "⭐" * task.confidence_score
    flames = "🔥" * task.difficulty_level
    return (
        f"*{index}. {task.title}*\n"
        f"   Project: {task.project} | Ticket: {task.ticket_number}\n"
        f"   Time: {task.estimated_time} | Confidence: {stars} | Difficulty: {flames}"
    )


def _plain(text: str) -> Dict[str, Any]:
    return {"type": "plain_text", "text": text, "emoji": True}


def _option(text: str, value: str) -> Dict[str, Any]:
    return {"text": _plain(text), "value": value}


def _feeling_options() -> List[Dict[str, Any]]:
    return [
        _option(f"{FEELING_EMOJI[feeling]} {feeling.value.capitalize()}", feeling.value)
        for feeling in Feeling
    ]


def _error_notice(error: Optional[str]) -> List[Dict[str, Any]]:
    if not error:
        return []
    return [{
        "type": "context",
        "elements": [{"type": "mrkdwn", "text": f"⚠️ {error}"}]
    }]


class ViewTemplate(Protocol):
    """Protocol for templates producing a Block Kit view payload."""

    def render(self, **kwargs) -> Dict[str, Any]:
        ...


class FeelingFormTemplate:
    """First step of the standup: how the user feels today."""

    def render(self, error: Optional[str] = None) -> Dict[str, Any]:
        blocks = [
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": "*How are you feeling today?* 😊"}
            },
            *_error_notice(error),
            {
                "type": "input",
                "block_id": "feeling_selection",
                "element": {
                    "type": "radio_buttons",
                    "action_id": "feeling",
                    "options": _feeling_options()
                },
                "label": _plain("Select your mood")
            }
        ]

        return {
            "type": "modal",
            "callback_id": FEELING_CALLBACK,
            "notify_on_close": True,
            "title": _plain("Daily Standup"),
            "submit": _plain("Next"),
            "close": _plain("Cancel"),
            "blocks": blocks
        }


class TaskFormTemplate:
    """
    Task entry step, used for both yesterday's and today's tasks.

    The modal's submit button adds the entered task and shows the form
    again; the "Done" button inside the modal moves on to the next step.
    The project field is a select when projects are configured and free
    text otherwise, since Slack rejects selects without options.
    """

    PROMPTS = {
        FlowStep.YESTERDAY: ("Yesterday's Tasks", "*What did you work on yesterday?*", "Done, next: today"),
        FlowStep.TODAY: ("Today's Tasks", "*What are you working on today?*", "Done, next: blockers"),
    }

    def render(
        self,
        which: FlowStep,
        projects: Sequence[str],
        time_estimates: Sequence[str],
        tasks: Sequence[TaskEntry] = (),
        error: Optional[str] = None
    ) -> Dict[str, Any]:
        if which not in self.PROMPTS:
            raise ValueError(f"No task form for step {which.value}")

        title, prompt, done_label = self.PROMPTS[which]
        blocks: List[Dict[str, Any]] = [
            {"type": "section", "text": {"type": "mrkdwn", "text": prompt}}
        ]

        if tasks:
            listing = "\n".join(f"{i}. {task.title} - {task.project}" for i, task in enumerate(tasks, 1))
            blocks.append({
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Tasks added ({len(tasks)}):*\n{listing}"}
            })

        blocks.append({
            "type": "actions",
            "block_id": "task_navigation",
            "elements": [{
                "type": "button",
                "text": _plain(done_label),
                "action_id": TASK_DONE_ACTIONS[which],
                "value": which.value
            }]
        })
        blocks.append({"type": "divider"})
        blocks.extend(_error_notice(error))

        if projects:
            project_element = {
                "type": "static_select",
                "action_id": "project_select",
                "placeholder": _plain("Select a project"),
                "options": [_option(project, project) for project in projects]
            }
        else:
            project_element = {
                "type": "plain_text_input",
                "action_id": "project_input",
                "placeholder": _plain("Project name")
            }

        blocks.extend([
            {
                "type": "input",
                "block_id": TASK_FIELD_BLOCKS["project"],
                "optional": True,
                "element": project_element,
                "label": _plain("Project")
            },
            {
                "type": "input",
                "block_id": TASK_FIELD_BLOCKS["ticket_number"],
                "optional": True,
                "element": {
                    "type": "plain_text_input",
                    "action_id": "ticket_input",
                    "placeholder": _plain("Ticket number, or leave blank for N/A")
                },
                "label": _plain("Ticket Number")
            },
            {
                "type": "input",
                "block_id": TASK_FIELD_BLOCKS["title"],
                "optional": True,
                "element": {
                    "type": "plain_text_input",
                    "action_id": "title_input",
                    "multiline": True,
                    "placeholder": _plain("Describe the task")
                },
                "label": _plain("Task Title")
            },
            {
                "type": "input",
                "block_id": TASK_FIELD_BLOCKS["estimated_time"],
                "optional": True,
                "element": {
                    "type": "static_select",
                    "action_id": "time_select",
                    "placeholder": _plain("Select estimated time"),
                    "options": [_option(label, label) for label in time_estimates]
                },
                "label": _plain("Estimated Time")
            },
            self._score_block(TASK_FIELD_BLOCKS["confidence_score"], "confidence_select",
                              "Confidence (1 = low, 5 = high)", "⭐"),
            self._score_block(TASK_FIELD_BLOCKS["difficulty_level"], "difficulty_select",
                              "Difficulty (1 = easy, 5 = hard)", "🔥"),
        ])

        return {
            "type": "modal",
            "callback_id": TASK_CALLBACKS[which],
            "notify_on_close": True,
            "private_metadata": json.dumps({"step": which.value, "task_count": len(tasks)}),
            "title": _plain(title),
            "submit": _plain("Add Another" if tasks else "Add Task"),
            "close": _plain("Cancel"),
            "blocks": blocks
        }

    @staticmethod
    def _score_block(block_id: str, action_id: str, label: str, glyph: str) -> Dict[str, Any]:
        return {
            "type": "input",
            "block_id": block_id,
            "optional": True,
            "element": {
                "type": "static_select",
                "action_id": action_id,
                "placeholder": _plain("Defaults to 3"),
                "options": [_option(f"{glyph * score} {score}", str(score)) for score in range(1, 6)]
            },
            "label": _plain(label)
        }


class BlockersFormTemplate:
    """Final step: optional blockers, with a count of the tasks entered."""

    def render(self, yesterday_count: int, today_count: int) -> Dict[str, Any]:
        return {
            "type": "modal",
            "callback_id": BLOCKERS_CALLBACK,
            "notify_on_close": True,
            "title": _plain("Any Blockers?"),
            "submit": _plain("Submit"),
            "close": _plain("Cancel"),
            "blocks": [
                {
                    "type": "section",
                    "text": {
                        "type": "mrkdwn",
                        "text": f"✅ *Yesterday:* {yesterday_count} task(s)\n✅ *Today:* {today_count} task(s)"
                    }
                },
                {"type": "divider"},
                {
                    "type": "input",
                    "block_id": "blockers",
                    "optional": True,
                    "element": {
                        "type": "plain_text_input",
                        "action_id": "blockers_input",
                        "multiline": True,
                        "placeholder": _plain("Describe any blockers or challenges (optional)")
                    },
                    "label": _plain("Blockers / Challenges")
                }
            ]
        }


class CheckInModalTemplate:
    """Check-in modal opened from the App Home."""

    def render(self) -> Dict[str, Any]:
        return {
            "type": "modal",
            "callback_id": CHECKIN_MODAL_CALLBACK,
            "title": _plain("Check In"),
            "submit": _plain("Check In"),
            "close": _plain("Cancel"),
            "blocks": [
                {
                    "type": "section",
                    "text": {
                        "type": "mrkdwn",
                        "text": "👋 *Ready to start your day?*\n\nCheck in to mark your presence and optionally submit your daily standup."
                    }
                },
                {"type": "divider"},
                {
                    "type": "input",
                    "block_id": "checkin_options",
                    "optional": True,
                    "element": {
                        "type": "checkboxes",
                        "action_id": "options_select",
                        "options": [{
                            "text": {
                                "type": "mrkdwn",
                                "text": "*Submit standup now*\nI want to share my daily update right away"
                            },
                            "value": "submit_standup"
                        }]
                    },
                    "label": _plain("Options")
                },
                {
                    "type": "input",
                    "block_id": "checkin_note",
                    "optional": True,
                    "element": {
                        "type": "plain_text_input",
                        "action_id": "note_input",
                        "multiline": True,
                        "placeholder": _plain("Add a note (optional)")
                    },
                    "label": _plain("Note")
                }
            ]
        }


class CheckOutModalTemplate:
    """Check-out modal opened from the App Home."""

    def render(self) -> Dict[str, Any]:
        return {
            "type": "modal",
            "callback_id": CHECKOUT_MODAL_CALLBACK,
            "title": _plain("Check Out"),
            "submit": _plain("Check Out"),
            "close": _plain("Cancel"),
            "blocks": [
                {
                    "type": "section",
                    "text": {
                        "type": "mrkdwn",
                        "text": "👋 *Ready to wrap up your day?*\n\nCheck out to mark the end of your workday."
                    }
                },
                {"type": "divider"},
                {
                    "type": "input",
                    "block_id": "checkout_note",
                    "optional": True,
                    "element": {
                        "type": "plain_text_input",
                        "action_id": "note_input",
                        "multiline": True,
                        "placeholder": _plain("Add a note about your day (optional)")
                    },
                    "label": _plain("Note")
                }
            ]
        }


class QuickStandupTemplate:
    """One-page standup: feeling, primary project, two summaries and blockers."""

    def render(self, projects: Sequence[str]) -> Dict[str, Any]:
        if projects:
            project_element = {
                "type": "static_select",
                "action_id": "project",
                "placeholder": _plain("Select project"),
                "options": [_option(project, project) for project in projects]
            }
        else:
            project_element = {
                "type": "plain_text_input",
                "action_id": "project",
                "placeholder": _plain("Project name")
            }

        return {
            "type": "modal",
            "callback_id": QUICK_STANDUP_CALLBACK,
            "title": _plain("Quick Standup"),
            "submit": _plain("Submit"),
            "close": _plain("Cancel"),
            "blocks": [
                {
                    "type": "section",
                    "text": {
                        "type": "mrkdwn",
                        "text": "📝 *Quick Daily Update*\n\nShare a brief update about your work."
                    }
                },
                {"type": "divider"},
                {
                    "type": "input",
                    "block_id": "feeling_selection",
                    "element": {
                        "type": "static_select",
                        "action_id": "feeling",
                        "placeholder": _plain("How are you feeling?"),
                        "options": _feeling_options()
                    },
                    "label": _plain("Feeling")
                },
                {
                    "type": "input",
                    "block_id": "project_select",
                    "element": project_element,
                    "label": _plain("Primary Project")
                },
                {
                    "type": "input",
                    "block_id": "yesterday_summary",
                    "element": {
                        "type": "plain_text_input",
                        "action_id": "summary_input",
                        "multiline": True,
                        "placeholder": _plain("What did you accomplish yesterday?")
                    },
                    "label": _plain("Yesterday's Work")
                },
                {
                    "type": "input",
                    "block_id": "today_plan",
                    "element": {
                        "type": "plain_text_input",
                        "action_id": "plan_input",
                        "multiline": True,
                        "placeholder": _plain("What are you working on today?")
                    },
                    "label": _plain("Today's Plan")
                },
                {
                    "type": "input",
                    "block_id": "blockers",
                    "optional": True,
                    "element": {
                        "type": "plain_text_input",
                        "action_id": "blockers_input",
                        "multiline": True,
                        "placeholder": _plain("Any blockers or challenges?")
                    },
                    "label": _plain("Blockers")
                }
            ]
        }


class AppHomeTemplate:
    """
    App Home tab: attendance status, quick actions, today's standup and
    30-day statistics.
    """

    def render(
        self,
        user_name: str,
        current_time: str,
        is_checked_in: bool,
        last_check_in: Optional[CheckInRecord],
        last_activity: Optional[str],
        stats: Optional[UserStats],
        today_standup: Optional[StandupRecord]
    ) -> Dict[str, Any]:
        stats = stats or UserStats()

        blocks: List[Dict[str, Any]] = [
            {"type": "header", "text": _plain(f"👋 Welcome, {user_name}!")},
            {"type": "section", "text": {"type": "mrkdwn", "text": f"🕐 Current time: *{current_time}*"}},
            {"type": "divider"},
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": "✅ *Status: Checked In*\nYou are currently active."
                    if is_checked_in
                    else "⏸️ *Status: Checked Out*\nStart your day by checking in!"
                }
            },
        ]

        if last_check_in is not None and last_activity:
            action = "Checked in" if last_check_in.type == CheckInType.CHECK_IN else "Checked out"
            blocks.append({
                "type": "context",
                "elements": [{"type": "mrkdwn", "text": f"Last activity: {action} at {last_activity}"}]
            })

        attendance_button: Dict[str, Any] = {
            "type": "button",
            "text": _plain("👋 Check Out" if is_checked_in else "👋 Check In"),
            "action_id": HOME_CHECKOUT_ACTION if is_checked_in else HOME_CHECKIN_ACTION,
            "value": "toggle_checkin"
        }
        if not is_checked_in:
            attendance_button["style"] = "primary"

        standup_button: Dict[str, Any] = {
            "type": "button",
            "text": _plain("📝 Submit Standup"),
            "action_id": HOME_STANDUP_ACTION,
            "value": "start_standup"
        }
        if today_standup is None:
            standup_button["style"] = "primary"

        blocks.extend([
            {"type": "divider"},
            {"type": "section", "text": {"type": "mrkdwn", "text": "*⚡ Quick Actions*"}},
            {"type": "actions", "elements": [attendance_button, standup_button]},
            {"type": "divider"},
        ])

        if today_standup is not None:
            text = (
                "✅ *Today's Standup Completed*\n"
                f"📊 Yesterday: {len(today_standup.yesterday)} task(s)\n"
                f"📋 Today: {len(today_standup.today)} task(s)"
            )
            if today_standup.blockers.strip():
                text += "\n🚧 Has blockers"
        else:
            text = "⏰ *Today's Standup: Not submitted*\nClick \"Submit Standup\" to share your daily update."

        blocks.extend([
            {"type": "section", "text": {"type": "mrkdwn", "text": text}},
            {"type": "divider"},
            {"type": "section", "text": {"type": "mrkdwn", "text": f"*📊 Your Stats (Last {stats.days_tracked} Days)*"}},
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Check-ins*\n{stats.total_check_ins}"},
                    {"type": "mrkdwn", "text": f"*Check-outs*\n{stats.total_check_outs}"}
                ]
            }
        ])

        return {"type": "home", "blocks": blocks}


class StandupSummaryTemplate:
    """
    Standup summary posted to project channels.

    Every channel receives the full summary, including tasks of other
    projects.
    """

    def render(self, record: StandupRecord) -> SlackMessage:
        blocks: List[Dict[str, Any]] = [
            {
                "type": "header",
                "text": _plain(f"{feeling_emoji(record.feeling)} {record.user_name}'s Daily Update")
            },
            {
                "type": "context",
                "elements": [{
                    "type": "mrkdwn",
                    "text": f"📅 {record.date.isoformat()} | Feeling: *{Feeling(record.feeling).value}*"
                }]
            },
            {"type": "divider"},
        ]

        for label, tasks in (("*✅ Yesterday:*", record.yesterday), ("*📋 Today:*", record.today)):
            if not tasks:
                continue
            blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": label}})
            for index, task in enumerate(tasks, 1):
                blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": format_task(task, index)}})

        if record.blockers.strip():
            blocks.append({
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*🚧 Blockers:*\n{record.blockers}"}
            })

        return SlackMessage(
            blocks=blocks,
            text=f"{record.user_name}'s daily standup for {record.date.isoformat()}"
        )


class StandupConfirmationTemplate:
    """Direct message confirming a submitted standup."""

    def render(self, record: StandupRecord) -> SlackMessage:
        date_str = record.date.isoformat()
        return SlackMessage(
            blocks=[{
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": (
                        "✅ *Standup submitted!*\n\n"
                        f"📅 Date: {date_str}\n"
                        f"📊 Yesterday: {len(record.yesterday)} task(s)\n"
                        f"📋 Today: {len(record.today)} task(s)"
                    )
                }
            }],
            text=f"✅ Your standup for {date_str} has been submitted successfully!"
        )


class AttendanceTemplate:
    """Check-in and check-out confirmations."""

    def render(
        self,
        user_name: str,
        kind: CheckInType,
        time: str,
        note: Optional[str] = None
    ) -> SlackMessage:
        if kind == CheckInType.CHECK_IN:
            text = f"✅ Welcome {user_name}! You checked in at {time}"
        else:
            text = f"👋 See you tomorrow {user_name}! You checked out at {time}"

        if note:
            text += f"\nNote: {note}"

        return SlackMessage(text=text)


class StandupPromptTemplate:
    """Direct message with a button that opens the quick standup."""

    def render(self) -> SlackMessage:
        return SlackMessage(
            blocks=[
                {"type": "section", "text": {"type": "mrkdwn", "text": "📝 *Ready to submit your standup?*"}},
                {
                    "type": "actions",
                    "elements": [{
                        "type": "button",
                        "text": _plain("Submit Standup Now"),
                        "style": "primary",
                        "action_id": STANDUP_AFTER_CHECKIN_ACTION,
                        "value": "quick_standup"
                    }]
                }
            ],
            text="Ready to submit your standup?"
        )


class StatusTemplate:
    """Reply to /status."""

    def render(
        self,
        user_name: str,
        is_checked_in: bool,
        last_activity: Optional[str],
        stats: Optional[UserStats],
        today_standup: Optional[StandupRecord]
    ) -> SlackMessage:
        stats = stats or UserStats()

        if today_standup is not None:
            standup_text = (
                f"✅ Submitted ({len(today_standup.yesterday)} yesterday, "
                f"{len(today_standup.today)} today)"
            )
        else:
            standup_text = "⏰ Not submitted"

        blocks = [
            {"type": "header", "text": _plain(f"{user_name}'s Status")},
            {
                "type": "section",
                "fields": [
                    {
                        "type": "mrkdwn",
                        "text": f"*Current Status:*\n{'✅ Checked In' if is_checked_in else '⏸️ Checked Out'}"
                    },
                    {"type": "mrkdwn", "text": f"*Last Activity:*\n{last_activity or 'N/A'}"},
                    {"type": "mrkdwn", "text": f"*Today's Standup:*\n{standup_text}"}
                ]
            },
            {"type": "divider"},
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": (
                        f"*Last {stats.days_tracked} Days:*\n"
                        f"• Check-ins: {stats.total_check_ins}\n"
                        f"• Check-outs: {stats.total_check_outs}"
                    )
                }
            }
        ]

        return SlackMessage(
            blocks=blocks,
            text=f"{user_name}: {'checked in' if is_checked_in else 'checked out'}"
        )


class ErrorTemplate:
    """
    Template for user-friendly error messages.

    Formats error messages with an icon and title, the error description
    and a troubleshooting suggestion.
    """

    ERROR_TEMPLATES = {
        "store_unavailable": {
            "title": "⚠️ Could Not Save",
            "icon": "⚠️",
            "default_suggestion": "Your answers are kept. Please try submitting again."
        },
        "form_unavailable": {
            "title": "⏱️ Form Could Not Be Opened",
            "icon": "⏱️",
            "default_suggestion": "Slack interactions expire after a few seconds. Please run the command again."
        },
        "flow_active": {
            "title": "📝 Standup In Progress",
            "icon": "📝",
            "default_suggestion": "Use `/standup restart` to start over or `/standup cancel` to discard it."
        },
        "invalid_command": {
            "title": "❌ Invalid Command",
            "icon": "❌",
            "default_suggestion": "Available commands: `/checkin`, `/checkout`, `/standup`, `/status`."
        },
        "rate_limited": {
            "title": "⏱️ Rate Limit Reached",
            "icon": "⏱️",
            "default_suggestion": "Too many requests. Please wait a moment and try again."
        },
        "unauthorized": {
            "title": "🔒 Permission Denied",
            "icon": "🔒",
            "default_suggestion": "The bot is missing a permission. Contact your workspace administrator."
        },
        "unknown": {
            "title": "❗ Unexpected Error",
            "icon": "❗",
            "default_suggestion": "An unexpected error occurred. Please try again."
        }
    }

    def render(
        self,
        error_type: str,
        message: str,
        suggestion: Optional[str] = None
    ) -> SlackMessage:
        template = self.ERROR_TEMPLATES.get(error_type, self.ERROR_TEMPLATES["unknown"])

        blocks = [
            {"type": "header", "text": _plain(template["title"])},
            {"type": "section", "text": {"type": "mrkdwn", "text": f"*Error:* {message}"}},
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Suggestion:* {suggestion or template['default_suggestion']}"}
            }
        ]

        return SlackMessage(
            blocks=blocks,
            text=f"{template['icon']} {message}"
        )
