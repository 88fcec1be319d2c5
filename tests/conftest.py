# Standup Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""Shared fakes and fixtures for the standup bot tests."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest

from standup_bot.dispatcher import StandupDispatcher
from standup_bot.distribution import StandupDistributor
from standup_bot.flow_state import InMemoryFlowStateStore
from standup_bot.form_gateway import FormGatewayError
from standup_bot.message_formatter import MessageFormatter
from standup_bot.models import ProjectChannel, SlackMessage
from standup_bot.record_store import InMemoryRecordStore, RecordStoreError
from standup_bot.repository import StandupRepository
from standup_bot.slack_api_client import SlackAPIRetryError
from standup_bot.standup_flow import StandupFlowService


START = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingGateway:
    """Form gateway that records every call instead of talking to Slack."""

    def __init__(self):
        self.opened: List[Tuple[str, Dict[str, Any]]] = []
        self.updated: List[Tuple[str, Dict[str, Any]]] = []
        self.posted: List[Tuple[str, SlackMessage]] = []
        self.fail_open: Optional[str] = None
        self.failing_channels: Set[str] = set()

    async def open(self, trigger_id: str, view: Dict[str, Any]) -> str:
        if self.fail_open:
            raise FormGatewayError("views.open failed", "views.open", self.fail_open)
        self.opened.append((trigger_id, view))
        return f"V{len(self.opened):04d}"

    async def update(self, view_id: str, view: Dict[str, Any]) -> None:
        self.updated.append((view_id, view))

    async def post_message(self, channel: str, message: SlackMessage) -> None:
        if channel in self.failing_channels:
            raise FormGatewayError("chat.postMessage failed", "chat.postMessage", "channel_not_found")
        self.posted.append((channel, message))


class FlakyRecordStore(InMemoryRecordStore):
    """In-memory store whose writes or reads can be made to fail."""

    def __init__(self):
        super().__init__()
        self.fail_appends = False
        self.failing_collections: Set[str] = set()

    async def append(self, collection: str, record: Dict[str, Any]) -> str:
        if self.fail_appends:
            raise RecordStoreError("store unavailable", collection)
        return await super().append(collection, record)

    async def query_latest(self, collection, *args, **kwargs):
        if collection in self.failing_collections:
            raise RecordStoreError("store unavailable", collection)
        return await super().query_latest(collection, *args, **kwargs)


@dataclass
class Harness:
    """A flow service wired to in-memory stores and a recording gateway."""
    clock: FixedClock
    record_store: FlakyRecordStore
    state_store: InMemoryFlowStateStore
    repository: StandupRepository
    gateway: RecordingGateway
    formatter: MessageFormatter
    distributor: StandupDistributor
    service: StandupFlowService
    channels: Dict[str, str] = field(default_factory=dict)

    async def configure(self, **changes) -> None:
        await self.repository.update_bot_config(**changes)

    async def map_channel(self, project: str, channel_id: str, channel_name: Optional[str] = None) -> None:
        await self.repository.save_project_channel(ProjectChannel(
            project_name=project,
            channel_id=channel_id,
            channel_name=channel_name or project.lower()
        ))
        self.channels[project] = channel_id


def build_harness(now: datetime = START) -> Harness:
    clock = FixedClock(now)
    record_store = FlakyRecordStore()
    state_store = InMemoryFlowStateStore()
    repository = StandupRepository(record_store)
    gateway = RecordingGateway()
    formatter = MessageFormatter()
    distributor = StandupDistributor(repository, gateway, formatter)
    service = StandupFlowService(state_store, repository, gateway, distributor, formatter=formatter, clock=clock)
    return Harness(
        clock=clock,
        record_store=record_store,
        state_store=state_store,
        repository=repository,
        gateway=gateway,
        formatter=formatter,
        distributor=distributor,
        service=service
    )


@pytest.fixture
def harness() -> Harness:
    return build_harness()


@pytest.fixture(scope="session")
def make_harness():
    """Harness factory, usable from hypothesis tests."""
    return build_harness


class FakeSlackClient:
    """Records the Slack calls made outside the form gateway."""

    def __init__(self):
        self.published = []
        self.opened = []
        self.messages = []
        self.fail_publish = False

    async def get_user_profile(self, user, fallback_name="User"):
        return {"name": "Alice Example", "email": "alice@example.com"}

    async def publish_view(self, user_id, view):
        if self.fail_publish:
            raise SlackAPIRetryError("views.publish failed", attempts=1)
        self.published.append((user_id, view))
        return {"ok": True}

    async def open_view(self, trigger_id, view):
        self.opened.append((trigger_id, view))
        return {"ok": True, "view": {"id": "V9"}}

    async def post_message(self, channel, text, blocks=None, **kwargs):
        self.messages.append((channel, text, blocks))
        return {"ok": True}


@pytest.fixture
def slack_client() -> FakeSlackClient:
    return FakeSlackClient()


@pytest.fixture
def dispatcher(harness, slack_client) -> StandupDispatcher:
    return StandupDispatcher(
        harness.service,
        harness.repository,
        slack_client,
        harness.formatter,
        clock=harness.clock
    )
