# Standup Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""Unit tests for StandupDistributor."""

import asyncio
from datetime import date

import pytest

from standup_bot.models import Feeling, StandupRecord, TaskEntry
from standup_bot.repository import PROJECT_CHANNELS


def make_record(*projects: str, today_projects=()) -> StandupRecord:
    def entries(names):
        return [
            TaskEntry(project=name, title=f"Work on {name}", estimated_time="1-2h")
            for name in names
        ]

    return StandupRecord(
        id="rec-1",
        user_id="U1",
        user_name="Alice",
        feeling=Feeling.GOOD,
        yesterday=entries(projects),
        today=entries(today_projects),
        blockers="",
        date=date(2026, 10, 19)
    )


@pytest.mark.asyncio
async def test_posts_once_per_mapped_project_in_first_seen_order(harness):
    await harness.map_channel("Alpha", "C0ALPHA")
    await harness.map_channel("Beta", "C0BETA")

    report = await harness.distributor.distribute(make_record("Beta", "Alpha", "Beta", today_projects=["Alpha"]))

    assert [channel for channel, _ in harness.gateway.posted] == ["C0BETA", "C0ALPHA"]
    assert report.post_count == 2
    assert [d.project for d in report.posted] == ["Beta", "Alpha"]


@pytest.mark.asyncio
async def test_every_channel_receives_the_full_summary(harness):
    await harness.map_channel("Alpha", "C0ALPHA")
    await harness.map_channel("Beta", "C0BETA")

    await harness.distributor.distribute(make_record("Alpha", today_projects=["Beta"]))

    (_, first), (_, second) = harness.gateway.posted
    assert first == second
    text = str(first.blocks)
    assert "Work on Alpha" in text
    assert "Work on Beta" in text


@pytest.mark.asyncio
async def test_unmapped_projects_are_skipped(harness):
    await harness.map_channel("Alpha", "C0ALPHA")

    report = await harness.distributor.distribute(make_record("Alpha", "Gamma"))

    assert report.unmapped == ["Gamma"]
    assert report.post_count == 1


@pytest.mark.asyncio
async def test_post_failure_does_not_stop_other_projects(harness):
    await harness.map_channel("Alpha", "C0ALPHA")
    await harness.map_channel("Beta", "C0BETA")
    harness.gateway.failing_channels.add("C0ALPHA")

    report = await harness.distributor.distribute(make_record("Alpha", "Beta"))

    assert [channel for channel, _ in harness.gateway.posted] == ["C0BETA"]
    assert [(f.project, f.channel_id) for f in report.failed] == [("Alpha", "C0ALPHA")]


@pytest.mark.asyncio
async def test_lookup_failure_is_reported_not_raised(harness):
    harness.record_store.failing_collections.add(PROJECT_CHANNELS)

    report = await harness.distributor.distribute(make_record("Alpha"))

    assert report.post_count == 0
    assert [f.project for f in report.failed] == ["Alpha"]


@pytest.mark.asyncio
async def test_shared_channel_gets_one_post(harness):
    await harness.map_channel("Alpha", "C0SHARED")
    await harness.map_channel("Beta", "C0SHARED")

    report = await harness.distributor.distribute(make_record("Alpha", "Beta"))

    assert len(harness.gateway.posted) == 1
    assert report.post_count == 1


@pytest.mark.asyncio
async def test_record_without_tasks_posts_nothing(harness):
    await harness.map_channel("Alpha", "C0ALPHA")

    report = await harness.distributor.distribute(make_record())

    assert harness.gateway.posted == []
    assert report.post_count == 0


@pytest.mark.asyncio
async def test_lookup_timeout_does_not_stop_other_projects(harness, monkeypatch):
    await harness.map_channel("Alpha", "C0ALPHA")
    await harness.map_channel("Beta", "C0BETA")
    lookup = harness.repository.get_project_channel

    async def slow_for_alpha(project):
        if project == "Alpha":
            raise asyncio.TimeoutError()
        return await lookup(project)

    monkeypatch.setattr(harness.repository, "get_project_channel", slow_for_alpha)

    report = await harness.distributor.distribute(make_record("Alpha", "Beta"))

    assert [channel for channel, _ in harness.gateway.posted] == ["C0BETA"]
    assert [(f.project, f.error) for f in report.failed] == [("Alpha", "TimeoutError")]
