# Standup Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Property-based tests for the standup flow.

Each example builds a fresh harness so that examples never share state.
"""

import asyncio
from datetime import timedelta

import pytest
from hypothesis import given, settings, strategies as st

from standup_bot.models import Feeling, FlowStep, StandupSession, TaskFormData
from standup_bot.record_store import RecordStoreError
from standup_bot.standup_flow import FlowAction


PROJECTS = ["Alpha", "Beta", "Gamma"]
ESTIMATES = ["1-2h", "2-3h", "3-4h", "4h+"]


# Custom strategies
@st.composite
def task_forms(draw):
    """Generate complete, valid task form submissions."""
    return TaskFormData(
        project=draw(st.sampled_from(PROJECTS)),
        ticket_number=draw(st.one_of(st.none(), st.just(""), st.from_regex(r"[A-Z]{2,5}-[0-9]{1,4}", fullmatch=True))),
        title=draw(st.text(min_size=1, max_size=80).filter(lambda s: s.strip())),
        estimated_time=draw(st.sampled_from(ESTIMATES)),
        confidence_score=draw(st.one_of(st.none(), st.integers(1, 5).map(str))),
        difficulty_level=draw(st.one_of(st.none(), st.integers(1, 5).map(str)))
    )


invalid_feelings = st.one_of(
    st.none(),
    st.just(""),
    st.text(max_size=20).filter(lambda s: s not in {f.value for f in Feeling}),
)


async def at_yesterday(harness, user_id="U1"):
    await harness.configure(projects=PROJECTS, time_estimates=ESTIMATES)
    await harness.service.start_flow(user_id, "Alice", "trigger")
    await harness.service.submit_feeling(user_id, "good")


@given(forms=st.lists(task_forms(), min_size=1, max_size=8))
@settings(max_examples=30, deadline=None)
def test_tasks_accumulate_in_submission_order(make_harness, forms):
    """Every added task is kept, in the order it was added."""
    harness = make_harness()

    async def scenario():
        await at_yesterday(harness)
        for form in forms:
            outcome = await harness.service.submit_task("U1", FlowStep.YESTERDAY, form, add_another=True)
            assert outcome.action == FlowAction.RENDER

        await harness.service.finish_tasks("U1", FlowStep.YESTERDAY)
        return await harness.state_store.get("U1")

    session = asyncio.run(scenario())

    assert session.step == FlowStep.TODAY
    assert [t.title for t in session.yesterday] == [f.title.strip() for f in forms]
    assert [t.project for t in session.yesterday] == [f.project for f in forms]
    assert all(t.ticket_number for t in session.yesterday)
    assert session.today == []


@given(feeling=invalid_feelings)
@settings(max_examples=30, deadline=None)
def test_invalid_feeling_never_changes_session(make_harness, feeling):
    """An empty or unknown feeling is rejected and the session is untouched."""
    harness = make_harness()

    async def scenario():
        await harness.service.start_flow("U1", "Alice", "trigger")
        before = await harness.state_store.get("U1")
        harness.clock.advance(minutes=5)
        outcome = await harness.service.submit_feeling("U1", feeling)
        return before, outcome, await harness.state_store.get("U1")

    before, outcome, after = asyncio.run(scenario())

    assert outcome.action == FlowAction.ERRORS
    assert "feeling_selection" in outcome.errors
    assert after == before


@given(forms=st.lists(task_forms(), max_size=3), other_feeling=st.sampled_from(list(Feeling)))
@settings(max_examples=20, deadline=None)
def test_users_never_affect_each_other(make_harness, forms, other_feeling):
    """One user's steps leave another user's session unchanged."""
    harness = make_harness()

    async def scenario():
        await at_yesterday(harness, "U1")
        await harness.service.start_flow("U2", "Bob", "trigger-2")
        bob_before = await harness.state_store.get("U2")

        for form in forms:
            await harness.service.submit_task("U1", FlowStep.YESTERDAY, form, add_another=True)
        await harness.service.cancel_flow("U1")

        bob_after = await harness.state_store.get("U2")
        outcome = await harness.service.submit_feeling("U2", other_feeling)
        return bob_before, bob_after, outcome

    bob_before, bob_after, outcome = asyncio.run(scenario())

    assert bob_after == bob_before
    assert outcome.step == FlowStep.YESTERDAY


@given(idle=st.integers(min_value=0, max_value=3 * 60 * 60), max_age=st.integers(min_value=1, max_value=120))
@settings(max_examples=50, deadline=None)
def test_sweep_removes_exactly_the_expired_sessions(make_harness, idle, max_age):
    """A session is swept iff it has been idle for longer than max_age."""
    harness = make_harness()

    async def scenario():
        last_active = harness.clock() - timedelta(seconds=idle)
        await harness.state_store.set(
            StandupSession(user_id="U1", display_name="Alice", started_at=last_active, last_activity_at=last_active)
        )
        removed = await harness.service.sweep_expired_sessions(max_age)
        return removed, await harness.state_store.get("U1")

    removed, session = asyncio.run(scenario())

    expired = idle > max_age * 60
    assert removed == (1 if expired else 0)
    assert (session is None) == expired


@given(
    channel_of=st.dictionaries(
        st.sampled_from(PROJECTS),
        st.sampled_from(["C0ONE", "C0TWO", "C0THREE"]),
    ),
    task_projects=st.lists(st.sampled_from(PROJECTS), min_size=1, max_size=6),
)
@settings(max_examples=40, deadline=None)
def test_one_post_per_distinct_channel(make_harness, channel_of, task_projects):
    """Each mapped channel gets the summary once, whatever the project overlap."""
    harness = make_harness()

    async def scenario():
        await harness.configure(projects=PROJECTS, time_estimates=ESTIMATES)
        for project, channel_id in channel_of.items():
            await harness.map_channel(project, channel_id)

        await harness.service.start_flow("U1", "Alice", "trigger")
        await harness.service.submit_feeling("U1", "great")
        for project in task_projects:
            form = TaskFormData(project=project, title=f"Work on {project}", estimated_time="1-2h")
            await harness.service.submit_task("U1", FlowStep.YESTERDAY, form, add_another=True)
        await harness.service.finish_tasks("U1", FlowStep.YESTERDAY)
        await harness.service.finish_tasks("U1", FlowStep.TODAY)
        await harness.service.submit_blockers("U1", "")

    asyncio.run(scenario())

    expected = {channel_of[p] for p in task_projects if p in channel_of}
    posted = [channel for channel, _ in harness.gateway.posted]

    assert sorted(posted) == sorted(expected)
    assert len({message.text for _, message in harness.gateway.posted}) <= 1


@given(store_fails=st.booleans(), blockers=st.one_of(st.none(), st.text(max_size=100)))
@settings(max_examples=30, deadline=None)
def test_session_removed_iff_record_stored(make_harness, store_fails, blockers):
    """Finalizing deletes the session exactly when the record is persisted."""
    harness = make_harness()

    async def scenario():
        await at_yesterday(harness)
        await harness.service.finish_tasks("U1", FlowStep.YESTERDAY)
        await harness.service.finish_tasks("U1", FlowStep.TODAY)
        harness.record_store.fail_appends = store_fails

        try:
            outcome = await harness.service.submit_blockers("U1", blockers)
        except RecordStoreError:
            outcome = None

        stored = await harness.repository.get_standup_by_date("U1", harness.clock().date())
        return outcome, stored, await harness.state_store.get("U1")

    outcome, stored, session = asyncio.run(scenario())

    if store_fails:
        assert outcome is None
        assert stored is None
        assert session.step == FlowStep.BLOCKERS
    else:
        assert outcome.action == FlowAction.COMPLETE
        assert stored.blockers == (blockers or "")
        assert session is None


@pytest.mark.parametrize("hour", [17, 18, 19, 20])
def test_record_date_follows_configured_timezone(make_harness, hour):
    """Standups submitted late in the UTC day are dated in the team's timezone."""
    harness = make_harness()
    harness.clock.now = harness.clock.now.replace(hour=hour, minute=30)

    async def scenario():
        await harness.configure(timezone="Asia/Kathmandu")
        outcome = await harness.service.submit_quick_standup(
            "U1", "Alice", "okay", "Alpha", "Did things", "", ""
        )
        return outcome.record

    record = asyncio.run(scenario())

    # Kathmandu is UTC+05:45, so 18:15 UTC and later falls on the next day
    expected_day = 20 if (hour, 30) >= (18, 15) else 19
    assert record.date.day == expected_day
    assert [t.estimated_time for t in record.yesterday] == ["2-3h"]
    assert record.today == []
