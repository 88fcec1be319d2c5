# Standup Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Slack interaction dispatcher.

Registers the bot's slash commands, modal submissions, button actions and
App Home events on a Bolt app and routes each one to the attendance logic
or the standup flow service. Handlers only translate between Slack
payloads and service calls; replies are built by the message formatter.
"""

from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from slack_bolt.async_app import AsyncApp

from standup_bot.error_handler import ErrorHandler
from standup_bot.form_gateway import FormGatewayError
from standup_bot.logging_config import get_logger
from standup_bot.message_formatter import MessageFormatter, civil_date
from standup_bot.models import (
    CheckInRecord,
    CheckInType,
    FlowStep,
    SlackMessage,
    SlashCommand,
    TaskFormData,
    utcnow,
)
from standup_bot.record_store import RecordStoreError
from standup_bot.repository import StandupRepository
from standup_bot.slack_api_client import SlackAPIClient, SlackAPIRetryError
from standup_bot.standup_flow import (
    FlowAction,
    FlowAlreadyActiveError,
    FlowOutcome,
    StandupFlowService,
)
from standup_bot.templates import (
    BLOCKERS_CALLBACK,
    CHECKIN_MODAL_CALLBACK,
    CHECKOUT_MODAL_CALLBACK,
    FEELING_CALLBACK,
    HOME_CHECKIN_ACTION,
    HOME_CHECKOUT_ACTION,
    HOME_STANDUP_ACTION,
    QUICK_STANDUP_CALLBACK,
    STANDUP_AFTER_CHECKIN_ACTION,
    TASK_CALLBACKS,
    TASK_DONE_ACTIONS,
    TASK_FIELD_BLOCKS,
)


logger = get_logger(__name__)


SUBMIT_AGAIN_ERROR = "We couldn't save your standup. Please try submitting again."
GENERIC_FORM_ERROR = "Something went wrong. Please try again."

COMMANDS = ("/checkin", "/checkout", "/standup", "/status")
FLOW_CALLBACKS = (FEELING_CALLBACK, *TASK_CALLBACKS.values(), BLOCKERS_CALLBACK)


# Form parsing

def state_value(values: Dict[str, Any], block_id: str, action_id: str) -> Optional[str]:
    """
    Value of one form element from view.state.values.

    Select menus and radio buttons report `selected_option`, text inputs
    report `value`. Returns None when the element is missing or empty.
    """
    element = values.get(block_id, {}).get(action_id)
    if not element:
        return None

    selected = element.get("selected_option")
    if selected:
        return selected.get("value")

    value = element.get("value")
    return value if value else None


def state_options(values: Dict[str, Any], block_id: str, action_id: str) -> list:
    """Values of the ticked options of a checkbox group."""
    element = values.get(block_id, {}).get(action_id) or {}
    return [option.get("value") for option in element.get("selected_options") or []]


def read_task_form(values: Dict[str, Any]) -> TaskFormData:
    """Raw task fields from a yesterday/today task form."""
    project_block = TASK_FIELD_BLOCKS["project"]
    return TaskFormData(
        project=state_value(values, project_block, "project_select")
        or state_value(values, project_block, "project_input"),
        ticket_number=state_value(values, TASK_FIELD_BLOCKS["ticket_number"], "ticket_input"),
        title=state_value(values, TASK_FIELD_BLOCKS["title"], "title_input"),
        estimated_time=state_value(values, TASK_FIELD_BLOCKS["estimated_time"], "time_select"),
        confidence_score=state_value(values, TASK_FIELD_BLOCKS["confidence_score"], "confidence_select"),
        difficulty_level=state_value(values, TASK_FIELD_BLOCKS["difficulty_level"], "difficulty_select"),
    )


def _view_values(view: Dict[str, Any]) -> Dict[str, Any]:
    return (view or {}).get("state", {}).get("values", {})


def _user_id(body: Dict[str, Any]) -> str:
    return (body.get("user") or {}).get("id", "")


class StandupDispatcher:
    """
    Routes Slack interactions to the attendance and standup logic.

    The handle_* methods hold the behavior and return the reply to show;
    the on_* methods are the Bolt listeners that ack and deliver it.
    """

    def __init__(
        self,
        flow_service: StandupFlowService,
        repository: StandupRepository,
        slack_client: SlackAPIClient,
        formatter: MessageFormatter,
        error_handler: Optional[ErrorHandler] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.flow_service = flow_service
        self.repository = repository
        self.slack_client = slack_client
        self.formatter = formatter
        self.error_handler = error_handler or ErrorHandler()
        self.clock = clock

    def register(self, app: AsyncApp) -> None:
        """Attach all listeners to the Bolt app."""
        for command in COMMANDS:
            app.command(command)(self.on_command)

        app.view(FEELING_CALLBACK)(self.on_feeling_submit)
        for callback_id in TASK_CALLBACKS.values():
            app.view(callback_id)(self.on_task_submit)
        app.view(BLOCKERS_CALLBACK)(self.on_blockers_submit)
        app.view(CHECKIN_MODAL_CALLBACK)(self.on_checkin_modal_submit)
        app.view(CHECKOUT_MODAL_CALLBACK)(self.on_checkout_modal_submit)
        app.view(QUICK_STANDUP_CALLBACK)(self.on_quick_standup_submit)
        for callback_id in FLOW_CALLBACKS:
            app.view_closed(callback_id)(self.on_flow_closed)

        for action_id in TASK_DONE_ACTIONS.values():
            app.action(action_id)(self.on_task_done)
        app.action(HOME_CHECKIN_ACTION)(self.on_home_checkin)
        app.action(HOME_CHECKOUT_ACTION)(self.on_home_checkout)
        app.action(HOME_STANDUP_ACTION)(self.on_open_quick_standup)
        app.action(STANDUP_AFTER_CHECKIN_ACTION)(self.on_open_quick_standup)

        app.event("app_home_opened")(self.on_app_home_opened)
        app.error(self.on_error)

        logger.info("Slack listeners registered")

    # Slash commands

    async def handle_command(self, cmd: SlashCommand) -> Optional[SlackMessage]:
        """
        Route a slash command.

        Returns the ephemeral reply, or None when the command answered by
        opening a modal.
        """
        logger.info(
            "Processing slash command",
            extra={"command": cmd.command, "text": cmd.text, "user_id": cmd.user_id}
        )

        handlers: Dict[str, Callable[[SlashCommand], Awaitable[Optional[SlackMessage]]]] = {
            "/checkin": self.handle_check_in,
            "/checkout": self.handle_check_out,
            "/standup": self.handle_standup,
            "/status": self.handle_status,
        }
        handler = handlers.get(cmd.command)
        if handler is None:
            return self.error_handler.get_command_help_message(cmd.command)

        try:
            return await handler(cmd)
        except Exception as e:
            return self.error_handler.handle_error(
                e, {"command": cmd.command, "user_id": cmd.user_id}
            )

    async def handle_check_in(self, cmd: SlashCommand) -> Optional[SlackMessage]:
        """
        Record a check-in.

        When the team requires a standup on check-in and the user has not
        submitted one today, the standup form is opened right away.
        """
        if await self.repository.is_user_checked_in(cmd.user_id):
            return self.formatter.format_text_message(
                "⚠️ You are already checked in!",
                context="Use `/checkout` to end your day."
            )

        config = await self.repository.get_bot_config()
        now = self.clock()
        today_standup = await self.repository.get_standup_by_date(
            cmd.user_id, civil_date(now, config.timezone)
        )

        form_failed = False
        form_opened = False
        if config.require_standup_on_check_in and today_standup is None:
            # The trigger expires after 3 seconds; the profile lookup and the save can wait
            try:
                await self.flow_service.start_flow(
                    cmd.user_id, cmd.user_name or "User", cmd.trigger_id, replace_existing=True
                )
                form_opened = True
            except FormGatewayError as e:
                logger.warning(
                    "Standup form could not be opened on check-in",
                    extra={"user_id": cmd.user_id, "error": e.message}
                )
                form_failed = True

        profile = await self.slack_client.get_user_profile(cmd.user_id, fallback_name=cmd.user_name or "User")
        await self.repository.save_check_in(CheckInRecord(
            user_id=cmd.user_id,
            user_name=profile["name"],
            user_email=profile["email"],
            type=CheckInType.CHECK_IN,
            standup_id=today_standup.id if today_standup else None
        ))
        await self.refresh_home(cmd.user_id, profile["name"])

        if form_opened:
            return None

        reply = self.formatter.format_attendance(
            profile["name"], CheckInType.CHECK_IN, now, tz_name=config.timezone
        )
        if form_failed:
            reply = self.formatter.format_text_message(
                reply.text,
                context="The standup form could not be opened. Run `/standup` to submit it."
            )
        return reply

    async def handle_check_out(self, cmd: SlashCommand) -> SlackMessage:
        if not await self.repository.is_user_checked_in(cmd.user_id):
            return self.formatter.format_text_message(
                "⚠️ You are not checked in!",
                context="Use `/checkin` to start your day."
            )

        profile = await self.slack_client.get_user_profile(cmd.user_id, fallback_name=cmd.user_name or "User")
        config = await self.repository.get_bot_config()
        await self.repository.save_check_in(CheckInRecord(
            user_id=cmd.user_id,
            user_name=profile["name"],
            user_email=profile["email"],
            type=CheckInType.CHECK_OUT
        ))
        await self.refresh_home(cmd.user_id, profile["name"])

        return self.formatter.format_attendance(
            profile["name"], CheckInType.CHECK_OUT, self.clock(), tz_name=config.timezone
        )

    async def handle_standup(self, cmd: SlashCommand) -> Optional[SlackMessage]:
        """
        /standup starts the flow, `restart` replaces a flow in progress and
        `cancel` discards it.
        """
        option = cmd.text.strip().lower()

        if option == "cancel":
            if await self.flow_service.cancel_flow(cmd.user_id):
                return self.formatter.format_text_message("🗑️ Your standup in progress was discarded.")
            return self.formatter.format_text_message("You have no standup in progress.")

        if option not in ("", "restart"):
            return self.error_handler.get_command_help_message(option)

        name = cmd.user_name or "User"
        try:
            await self.flow_service.start_flow(
                cmd.user_id, name, cmd.trigger_id, replace_existing=(option == "restart")
            )
        except FlowAlreadyActiveError as e:
            return self.error_handler.handle_flow_active(e)
        return None

    async def handle_status(self, cmd: SlashCommand) -> SlackMessage:
        config = await self.repository.get_bot_config()
        last_check_in = await self.repository.get_last_check_in(cmd.user_id)
        return self.formatter.format_status(
            user_name=cmd.user_name or "User",
            is_checked_in=last_check_in is not None and last_check_in.type == CheckInType.CHECK_IN,
            last_check_in=last_check_in,
            stats=await self.repository.get_user_stats(cmd.user_id),
            today_standup=await self.repository.get_standup_by_date(
                cmd.user_id, civil_date(self.clock(), config.timezone)
            ),
            tz_name=config.timezone
        )

    # Standup flow submissions

    async def handle_feeling_submit(self, user_id: str, view: Dict[str, Any]) -> FlowOutcome:
        feeling = state_value(_view_values(view), "feeling_selection", "feeling")
        return await self.flow_service.submit_feeling(user_id, feeling)

    async def handle_task_submit(self, user_id: str, view: Dict[str, Any]) -> FlowOutcome:
        which = _step_for_callback(view.get("callback_id", ""))
        return await self.flow_service.submit_task(
            user_id, which, read_task_form(_view_values(view)), add_another=True
        )

    async def handle_task_done(self, user_id: str, action_id: str, view: Dict[str, Any]) -> FlowOutcome:
        """Done button: keep a filled-in task, then move to the next step in place."""
        which = next(step for step, action in TASK_DONE_ACTIONS.items() if action == action_id)
        return await self.flow_service.submit_task(
            user_id,
            which,
            read_task_form(_view_values(view)),
            add_another=False,
            view_id=view.get("id")
        )

    async def handle_blockers_submit(self, user_id: str, view: Dict[str, Any]) -> FlowOutcome:
        """
        Finalize the standup.

        A failed save is reported on the blockers field so the user can
        submit the same form again.
        """
        blockers = state_value(_view_values(view), "blockers", "blockers_input")
        try:
            outcome = await self.flow_service.submit_blockers(user_id, blockers)
        except RecordStoreError as e:
            self.error_handler.handle_store_error(e, {"user_id": user_id})
            return FlowOutcome.invalid(FlowStep.BLOCKERS, {"blockers": SUBMIT_AGAIN_ERROR})
        return outcome

    async def handle_quick_standup_submit(self, user_id: str, view: Dict[str, Any]) -> FlowOutcome:
        values = _view_values(view)
        profile = await self.slack_client.get_user_profile(user_id)
        try:
            outcome = await self.flow_service.submit_quick_standup(
                user_id=user_id,
                display_name=profile["name"],
                feeling=state_value(values, "feeling_selection", "feeling"),
                project=state_value(values, "project_select", "project"),
                yesterday_summary=state_value(values, "yesterday_summary", "summary_input"),
                today_plan=state_value(values, "today_plan", "plan_input"),
                blockers=state_value(values, "blockers", "blockers_input")
            )
        except RecordStoreError as e:
            self.error_handler.handle_store_error(e, {"user_id": user_id})
            return FlowOutcome.invalid(FlowStep.BLOCKERS, {"blockers": SUBMIT_AGAIN_ERROR})
        return outcome

    async def notify_standup_saved(self, outcome: FlowOutcome) -> None:
        """Confirm a saved standup by DM and refresh the user's App Home."""
        record = outcome.record
        await self._send_direct_message(record.user_id, self.formatter.format_standup_confirmation(record))
        await self.refresh_home(record.user_id, record.user_name)

    # Attendance modals

    async def handle_attendance_modal(self, user_id: str, kind: CheckInType, view: Dict[str, Any]) -> None:
        """Check-in or check-out submitted from the App Home modal."""
        values = _view_values(view)
        block_id = "checkin_note" if kind == CheckInType.CHECK_IN else "checkout_note"
        note = state_value(values, block_id, "note_input")

        checked_in = await self.repository.is_user_checked_in(user_id)
        if checked_in == (kind == CheckInType.CHECK_IN):
            text = "⚠️ You are already checked in!" if checked_in else "⚠️ You are not checked in!"
            await self._send_direct_message(user_id, self.formatter.format_text_message(text))
            return

        profile = await self.slack_client.get_user_profile(user_id)
        config = await self.repository.get_bot_config()
        await self.repository.save_check_in(CheckInRecord(
            user_id=user_id,
            user_name=profile["name"],
            user_email=profile["email"],
            type=kind
        ))

        await self._send_direct_message(
            user_id,
            self.formatter.format_attendance(profile["name"], kind, self.clock(), note, config.timezone)
        )
        if kind == CheckInType.CHECK_IN and "submit_standup" in state_options(values, "checkin_options", "options_select"):
            await self._send_direct_message(user_id, self.formatter.format_standup_prompt())

        await self.refresh_home(user_id, profile["name"])

    # App Home

    async def refresh_home(self, user_id: str, user_name: Optional[str] = None) -> None:
        """Publish the user's App Home. Failures are logged, never raised."""
        if user_name is None:
            user_name = (await self.slack_client.get_user_profile(user_id))["name"]

        config = await self.repository.get_bot_config()
        now = self.clock()
        last_check_in = await self.repository.get_last_check_in(user_id)
        view = self.formatter.format_app_home(
            user_name=user_name,
            now=now,
            is_checked_in=last_check_in is not None and last_check_in.type == CheckInType.CHECK_IN,
            last_check_in=last_check_in,
            stats=await self.repository.get_user_stats(user_id),
            today_standup=await self.repository.get_standup_by_date(user_id, civil_date(now, config.timezone)),
            tz_name=config.timezone
        )

        try:
            await self.slack_client.publish_view(user_id, view)
        except SlackAPIRetryError as e:
            logger.error("Failed to publish App Home", extra={"user_id": user_id, "error": e.message})

    async def open_modal(self, trigger_id: str, view: Dict[str, Any], user_id: str) -> None:
        try:
            await self.slack_client.open_view(trigger_id, view)
        except SlackAPIRetryError as e:
            logger.error(
                "Failed to open modal",
                extra={"user_id": user_id, "callback_id": view.get("callback_id"), "error": e.message}
            )

    # Bolt listeners

    async def on_command(self, ack, command, respond):
        await ack()
        await self._reply(respond, await self.handle_command(SlashCommand.from_payload(command)))

    async def on_feeling_submit(self, ack, body, view):
        await self._submit_flow_form(ack, _user_id(body), view, self.handle_feeling_submit, "feeling_selection")

    async def on_task_submit(self, ack, body, view):
        await self._submit_flow_form(ack, _user_id(body), view, self.handle_task_submit, TASK_FIELD_BLOCKS["title"])

    async def on_blockers_submit(self, ack, body, view):
        await self._submit_flow_form(ack, _user_id(body), view, self.handle_blockers_submit, "blockers")

    async def on_quick_standup_submit(self, ack, body, view):
        await self._submit_flow_form(ack, _user_id(body), view, self.handle_quick_standup_submit, "blockers")

    async def on_checkin_modal_submit(self, ack, body, view):
        await ack()
        await self._run_attendance_modal(_user_id(body), CheckInType.CHECK_IN, view)

    async def on_checkout_modal_submit(self, ack, body, view):
        await ack()
        await self._run_attendance_modal(_user_id(body), CheckInType.CHECK_OUT, view)

    async def on_flow_closed(self, ack, body):
        await ack()
        await self.flow_service.cancel_flow(_user_id(body))

    async def on_task_done(self, ack, body, action):
        await ack()
        user_id = _user_id(body)
        try:
            await self.handle_task_done(user_id, action["action_id"], body.get("view") or {})
        except Exception as e:
            await self._send_direct_message(
                user_id, self.error_handler.handle_error(e, {"user_id": user_id, "action_id": action["action_id"]})
            )

    async def on_home_checkin(self, ack, body):
        await ack()
        user_id = _user_id(body)
        if await self.repository.is_user_checked_in(user_id):
            await self.refresh_home(user_id)
            return
        await self.open_modal(body["trigger_id"], self.formatter.checkin_form(), user_id)

    async def on_home_checkout(self, ack, body):
        await ack()
        user_id = _user_id(body)
        if not await self.repository.is_user_checked_in(user_id):
            await self.refresh_home(user_id)
            return
        await self.open_modal(body["trigger_id"], self.formatter.checkout_form(), user_id)

    async def on_open_quick_standup(self, ack, body):
        await ack()
        config = await self.repository.get_bot_config()
        await self.open_modal(body["trigger_id"], self.formatter.quick_standup_form(config.projects), _user_id(body))

    async def on_app_home_opened(self, event):
        if event.get("tab", "home") != "home":
            return
        await self.refresh_home(event["user"])

    async def on_error(self, error, body):
        logger.error(
            "Unhandled error in Slack listener",
            extra={"error": str(error), "type": (body or {}).get("type")},
            exc_info=error
        )

    # Internals

    async def _reply(self, respond, message: Optional[SlackMessage]) -> None:
        if message is None:
            return
        await respond(text=message.text, blocks=message.blocks or None, response_type="ephemeral")

    async def _submit_flow_form(self, ack, user_id: str, view, handler, error_block: str) -> None:
        """
        Run a flow handler before acking, so the next step replaces the
        modal or field errors are shown on it.
        """
        try:
            outcome = await handler(user_id, view)
        except Exception as e:
            self.error_handler.handle_generic_error(
                e, {"user_id": user_id, "callback_id": view.get("callback_id")}
            )
            await ack(response_action="errors", errors={error_block: GENERIC_FORM_ERROR})
            return

        await ack_outcome(ack, outcome)
        if outcome.action == FlowAction.COMPLETE:
            await self.notify_standup_saved(outcome)

    async def _run_attendance_modal(self, user_id: str, kind: CheckInType, view) -> None:
        try:
            await self.handle_attendance_modal(user_id, kind, view)
        except Exception as e:
            await self._send_direct_message(
                user_id, self.error_handler.handle_error(e, {"user_id": user_id, "type": kind.value})
            )

    async def _send_direct_message(self, user_id: str, message: SlackMessage) -> None:
        try:
            await self.slack_client.post_message(user_id, message.text, blocks=message.blocks or None)
        except SlackAPIRetryError as e:
            logger.error("Failed to send direct message", extra={"user_id": user_id, "error": e.message})


async def ack_outcome(ack, outcome: FlowOutcome) -> None:
    """Answer a view submission according to the flow outcome."""
    if outcome.action == FlowAction.RENDER:
        await ack(response_action="update", view=outcome.view)
    elif outcome.action == FlowAction.ERRORS:
        await ack(response_action="errors", errors=outcome.errors)
    else:
        await ack()


def _step_for_callback(callback_id: str) -> FlowStep:
    for step, known in TASK_CALLBACKS.items():
        if known == callback_id:
            return step
    raise ValueError(f"Not a task form: {callback_id}")
