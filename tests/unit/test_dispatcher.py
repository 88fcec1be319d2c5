# Standup Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Unit tests for StandupDispatcher.

Slash commands, modal submissions and button actions are driven with
Slack-shaped payloads against in-memory stores.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from standup_bot.dispatcher import read_task_form, state_options, state_value
from standup_bot.models import CheckInRecord, CheckInType, FlowStep, SlashCommand


def command(name: str, text: str = "") -> SlashCommand:
    return SlashCommand(
        command=name,
        text=text,
        user_id="U1",
        user_name="alice",
        channel_id="C0GENERAL",
        trigger_id="trigger-1"
    )


def view_payload(callback_id: str, values: dict, view_id: str = "V0001") -> dict:
    return {"id": view_id, "callback_id": callback_id, "state": {"values": values}}


def body_for(user_id: str = "U1", **extra) -> dict:
    return {"user": {"id": user_id}, **extra}


def selected(value):
    return {"selected_option": {"value": value}}


# Form parsing

def test_state_value_reads_selects_and_inputs():
    values = {
        "feeling_selection": {"feeling": selected("good")},
        "blockers": {"blockers_input": {"value": "CI is red"}},
        "empty": {"input": {"value": ""}},
    }

    assert state_value(values, "feeling_selection", "feeling") == "good"
    assert state_value(values, "blockers", "blockers_input") == "CI is red"
    assert state_value(values, "empty", "input") is None
    assert state_value(values, "missing", "input") is None


def test_state_options_reads_checkboxes():
    values = {"checkin_options": {"options_select": {"selected_options": [{"value": "submit_standup"}]}}}

    assert state_options(values, "checkin_options", "options_select") == ["submit_standup"]
    assert state_options({}, "checkin_options", "options_select") == []


def test_read_task_form_accepts_select_or_free_text_project():
    values = {
        "project": {"project_input": {"value": "Alpha"}},
        "ticket_number": {"ticket_input": {"value": "PROJ-9"}},
        "task_title": {"title_input": {"value": "Fix\nlogin"}},
        "estimated_time": {"time_select": selected("1-2h")},
        "confidence_score": {"confidence_select": selected("5")},
        "difficulty_level": {"difficulty_select": {"selected_option": None}},
    }

    form = read_task_form(values)

    assert form.project == "Alpha"
    assert form.title == "Fix\nlogin"
    assert form.confidence_score == "5"
    assert form.difficulty_level is None


# Registration

def test_register_attaches_every_listener(dispatcher):
    app = MagicMock()

    dispatcher.register(app)

    commands = {c.args[0] for c in app.command.call_args_list}
    views = {c.args[0] for c in app.view.call_args_list}
    actions = {c.args[0] for c in app.action.call_args_list}
    assert commands == {"/checkin", "/checkout", "/standup", "/status"}
    assert {"standup_feeling_submit", "task_entry_yesterday", "task_entry_today", "blockers_submit",
            "checkin_modal_submit", "checkout_modal_submit", "quick_standup_submit"} <= views
    assert {"task_done_yesterday", "task_done_today", "home_checkin", "home_checkout",
            "home_start_standup", "trigger_standup_after_checkin"} <= actions
    app.event.assert_called_once_with("app_home_opened")


# /checkin and /checkout

@pytest.mark.asyncio
async def test_checkin_opens_standup_when_required(dispatcher, harness, slack_client):
    reply = await dispatcher.handle_command(command("/checkin"))

    assert reply is None
    assert await harness.repository.is_user_checked_in("U1")
    assert await harness.service.has_active_flow("U1")
    assert harness.gateway.opened[0][0] == "trigger-1"
    assert slack_client.published[0][0] == "U1"

    last = await harness.repository.get_last_check_in("U1")
    assert last.user_email == "alice@example.com"
    assert last.user_name == "Alice Example"


@pytest.mark.asyncio
async def test_checkin_opens_form_before_profile_lookup_and_save(dispatcher, harness, slack_client, monkeypatch):
    forms_open_at_lookup = []
    lookup = slack_client.get_user_profile

    async def profile(user, fallback_name="User"):
        forms_open_at_lookup.append(len(harness.gateway.opened))
        assert not await harness.repository.is_user_checked_in(user)
        return await lookup(user, fallback_name)

    monkeypatch.setattr(slack_client, "get_user_profile", profile)

    await dispatcher.handle_command(command("/checkin"))

    assert forms_open_at_lookup == [1]
    assert await harness.repository.is_user_checked_in("U1")


@pytest.mark.asyncio
async def test_checkin_confirms_when_standup_not_required(dispatcher, harness):
    await harness.configure(require_standup_on_check_in=False)

    reply = await dispatcher.handle_command(command("/checkin"))

    assert reply.text.startswith("✅ Welcome Alice Example!")
    assert not await harness.service.has_active_flow("U1")


@pytest.mark.asyncio
async def test_checkin_links_todays_standup(dispatcher, harness):
    await harness.service.submit_quick_standup("U1", "Alice", "good", "Alpha", "Reviewed", "", "")

    reply = await dispatcher.handle_command(command("/checkin"))

    assert reply is not None
    last = await harness.repository.get_last_check_in("U1")
    assert last.standup_id is not None
    assert harness.gateway.opened == []


@pytest.mark.asyncio
async def test_checkin_twice_warns(dispatcher, harness):
    await harness.configure(require_standup_on_check_in=False)
    await dispatcher.handle_command(command("/checkin"))

    reply = await dispatcher.handle_command(command("/checkin"))

    assert "already checked in" in reply.text


@pytest.mark.asyncio
async def test_checkin_still_saved_when_form_fails(dispatcher, harness):
    harness.gateway.fail_open = "expired_trigger_id"

    reply = await dispatcher.handle_command(command("/checkin"))

    assert await harness.repository.is_user_checked_in("U1")
    assert "/standup" in str(reply.blocks)


@pytest.mark.asyncio
async def test_checkout_requires_check_in(dispatcher):
    reply = await dispatcher.handle_command(command("/checkout"))

    assert "not checked in" in reply.text


@pytest.mark.asyncio
async def test_checkout_after_checkin(dispatcher, harness):
    await harness.repository.save_check_in(
        CheckInRecord(user_id="U1", user_name="Alice", type=CheckInType.CHECK_IN)
    )

    reply = await dispatcher.handle_command(command("/checkout"))

    assert reply.text.startswith("👋 See you tomorrow")
    assert not await harness.repository.is_user_checked_in("U1")


@pytest.mark.asyncio
async def test_store_failure_becomes_error_message(dispatcher, harness):
    await harness.configure(require_standup_on_check_in=False)
    harness.record_store.fail_appends = True

    reply = await dispatcher.handle_command(command("/checkin"))

    assert reply.blocks[0]["text"]["text"] == "⚠️ Could Not Save"


# /standup

@pytest.mark.asyncio
async def test_standup_starts_flow(dispatcher, harness):
    reply = await dispatcher.handle_command(command("/standup"))

    assert reply is None
    assert (await harness.state_store.get("U1")).step == FlowStep.FEELING


@pytest.mark.asyncio
async def test_standup_while_active_explains_options(dispatcher):
    await dispatcher.handle_command(command("/standup"))

    reply = await dispatcher.handle_command(command("/standup"))

    assert "/standup restart" in str(reply.blocks)


@pytest.mark.asyncio
async def test_standup_restart_and_cancel(dispatcher, harness):
    await dispatcher.handle_command(command("/standup"))
    await harness.service.submit_feeling("U1", "good")

    assert await dispatcher.handle_command(command("/standup", "restart")) is None
    assert (await harness.state_store.get("U1")).step == FlowStep.FEELING

    reply = await dispatcher.handle_command(command("/standup", "cancel"))
    assert "discarded" in reply.text
    assert not await harness.service.has_active_flow("U1")

    reply = await dispatcher.handle_command(command("/standup", "cancel"))
    assert "no standup in progress" in reply.text


@pytest.mark.asyncio
async def test_standup_unknown_option_shows_help(dispatcher):
    reply = await dispatcher.handle_command(command("/standup", "later"))

    assert "Unknown option: `later`" in reply.text


@pytest.mark.asyncio
async def test_status_reports_attendance(dispatcher, harness):
    await harness.repository.save_check_in(
        CheckInRecord(user_id="U1", user_name="Alice", type=CheckInType.CHECK_IN)
    )

    reply = await dispatcher.handle_command(command("/status"))

    assert reply.text == "alice: checked in"


@pytest.mark.asyncio
async def test_command_listener_acks_and_responds(dispatcher):
    ack, respond = AsyncMock(), AsyncMock()
    payload = {"command": "/checkout", "text": "", "user_id": "U1", "user_name": "alice", "trigger_id": "t"}

    await dispatcher.on_command(ack=ack, command=payload, respond=respond)

    ack.assert_awaited_once_with()
    assert respond.await_args.kwargs["response_type"] == "ephemeral"


# Standup modals

@pytest.mark.asyncio
async def test_feeling_submit_updates_modal(dispatcher, harness):
    await harness.service.start_flow("U1", "Alice", "trigger-1")
    ack = AsyncMock()
    view = view_payload("standup_feeling_submit", {"feeling_selection": {"feeling": selected("great")}})

    await dispatcher.on_feeling_submit(ack=ack, body=body_for(), view=view)

    kwargs = ack.await_args.kwargs
    assert kwargs["response_action"] == "update"
    assert kwargs["view"]["callback_id"] == "task_entry_yesterday"


@pytest.mark.asyncio
async def test_feeling_submit_without_choice_shows_errors(dispatcher, harness):
    await harness.service.start_flow("U1", "Alice", "trigger-1")
    ack = AsyncMock()

    await dispatcher.on_feeling_submit(ack=ack, body=body_for(), view=view_payload("standup_feeling_submit", {}))

    assert ack.await_args.kwargs["response_action"] == "errors"
    assert "feeling_selection" in ack.await_args.kwargs["errors"]


@pytest.mark.asyncio
async def test_task_submit_adds_task(dispatcher, harness):
    await harness.service.start_flow("U1", "Alice", "trigger-1")
    await harness.service.submit_feeling("U1", "good")
    ack = AsyncMock()
    values = {
        "project": {"project_input": {"value": "Alpha"}},
        "task_title": {"title_input": {"value": "Fix login"}},
        "estimated_time": {"time_select": selected("2-3h")},
    }

    await dispatcher.on_task_submit(ack=ack, body=body_for(), view=view_payload("task_entry_yesterday", values))

    assert ack.await_args.kwargs["response_action"] == "update"
    assert len((await harness.state_store.get("U1")).yesterday) == 1


@pytest.mark.asyncio
async def test_done_button_advances_in_place(dispatcher, harness):
    await harness.service.start_flow("U1", "Alice", "trigger-1")
    await harness.service.submit_feeling("U1", "good")
    ack = AsyncMock()
    body = body_for(view=view_payload("task_entry_yesterday", {}, view_id="V0001"))

    await dispatcher.on_task_done(ack=ack, body=body, action={"action_id": "task_done_yesterday"})

    ack.assert_awaited_once_with()
    assert (await harness.state_store.get("U1")).step == FlowStep.TODAY
    assert harness.gateway.updated[-1][0] == "V0001"


@pytest.mark.asyncio
async def test_blockers_submit_confirms_after_ack(dispatcher, harness, slack_client):
    await harness.service.start_flow("U1", "Alice", "trigger-1")
    await harness.service.submit_feeling("U1", "good")
    await harness.service.finish_tasks("U1", FlowStep.YESTERDAY)
    await harness.service.finish_tasks("U1", FlowStep.TODAY)
    ack = AsyncMock()
    view = view_payload("blockers_submit", {"blockers": {"blockers_input": {"value": "None"}}})

    await dispatcher.on_blockers_submit(ack=ack, body=body_for(), view=view)

    ack.assert_awaited_once_with()
    assert not await harness.service.has_active_flow("U1")
    assert slack_client.messages[0][0] == "U1"
    assert "submitted" in slack_client.messages[0][1]


@pytest.mark.asyncio
async def test_blockers_store_failure_asks_to_resubmit(dispatcher, harness, slack_client):
    await harness.service.start_flow("U1", "Alice", "trigger-1")
    await harness.service.submit_feeling("U1", "good")
    await harness.service.finish_tasks("U1", FlowStep.YESTERDAY)
    await harness.service.finish_tasks("U1", FlowStep.TODAY)
    harness.record_store.fail_appends = True
    ack = AsyncMock()

    await dispatcher.on_blockers_submit(ack=ack, body=body_for(), view=view_payload("blockers_submit", {}))

    assert ack.await_args.kwargs["response_action"] == "errors"
    assert "blockers" in ack.await_args.kwargs["errors"]
    assert (await harness.state_store.get("U1")).step == FlowStep.BLOCKERS
    assert slack_client.messages == []


@pytest.mark.asyncio
async def test_closing_flow_modal_cancels_session(dispatcher, harness):
    await harness.service.start_flow("U1", "Alice", "trigger-1")
    ack = AsyncMock()

    await dispatcher.on_flow_closed(ack=ack, body=body_for())

    ack.assert_awaited_once_with()
    assert not await harness.service.has_active_flow("U1")


@pytest.mark.asyncio
async def test_quick_standup_submit(dispatcher, harness, slack_client):
    await harness.map_channel("Alpha", "C0ALPHA")
    ack = AsyncMock()
    values = {
        "feeling_selection": {"feeling": selected("good")},
        "project_select": {"project": {"value": "Alpha"}},
        "yesterday_summary": {"summary_input": {"value": "Reviewed PRs"}},
        "today_plan": {"plan_input": {"value": "Ship it"}},
    }

    await dispatcher.on_quick_standup_submit(ack=ack, body=body_for(), view=view_payload("quick_standup_submit", values))

    ack.assert_awaited_once_with()
    assert [channel for channel, _ in harness.gateway.posted] == ["C0ALPHA"]
    assert slack_client.published


# Attendance modals and App Home

@pytest.mark.asyncio
async def test_checkin_modal_with_standup_option_sends_prompt(dispatcher, harness, slack_client):
    ack = AsyncMock()
    values = {
        "checkin_options": {"options_select": {"selected_options": [{"value": "submit_standup"}]}},
        "checkin_note": {"note_input": {"value": "Working from home"}},
    }

    await dispatcher.on_checkin_modal_submit(ack=ack, body=body_for(), view=view_payload("checkin_modal_submit", values))

    assert await harness.repository.is_user_checked_in("U1")
    texts = [text for _, text, _ in slack_client.messages]
    assert "Note: Working from home" in texts[0]
    assert texts[1] == "Ready to submit your standup?"


@pytest.mark.asyncio
async def test_checkout_modal_when_not_checked_in(dispatcher, harness, slack_client):
    await dispatcher.on_checkout_modal_submit(
        ack=AsyncMock(), body=body_for(), view=view_payload("checkout_modal_submit", {})
    )

    assert "not checked in" in slack_client.messages[0][1]
    assert await harness.repository.get_last_check_in("U1") is None


@pytest.mark.asyncio
async def test_home_checkin_button_opens_modal(dispatcher, slack_client):
    await dispatcher.on_home_checkin(ack=AsyncMock(), body=body_for(trigger_id="trigger-9"))

    trigger_id, view = slack_client.opened[0]
    assert trigger_id == "trigger-9"
    assert view["callback_id"] == "checkin_modal_submit"


@pytest.mark.asyncio
async def test_quick_standup_button_opens_modal(dispatcher, harness, slack_client):
    await harness.configure(projects=["Alpha", "Beta"])

    await dispatcher.on_open_quick_standup(ack=AsyncMock(), body=body_for(trigger_id="trigger-9"))

    assert slack_client.opened[0][1]["callback_id"] == "quick_standup_submit"


@pytest.mark.asyncio
async def test_app_home_opened_publishes_home(dispatcher, slack_client):
    await dispatcher.on_app_home_opened(event={"user": "U1", "tab": "home"})
    await dispatcher.on_app_home_opened(event={"user": "U1", "tab": "messages"})

    assert len(slack_client.published) == 1
    assert slack_client.published[0][1]["type"] == "home"


@pytest.mark.asyncio
async def test_home_publish_failure_is_not_raised(dispatcher, slack_client):
    slack_client.fail_publish = True

    await dispatcher.refresh_home("U1")

    assert slack_client.published == []
