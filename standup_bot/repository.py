# Standup Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Domain queries over the record store.

Translates between the document collections and the bot's models:
attendance log, standup records, project channel routing, the bot
configuration singleton and per-user preferences.

Write operations raise RecordStoreError. Read operations used on the
conversational path log store failures and return an empty result, so a
flaky database degrades replies instead of breaking them.
"""

from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

from pydantic import ValidationError

from standup_bot.logging_config import get_logger
from standup_bot.models import (
    BotConfig,
    CheckInRecord,
    CheckInType,
    ProjectChannel,
    StandupRecord,
    UserPreferences,
    UserStats,
)
from standup_bot.record_store import FieldFilter, RecordStore, RecordStoreError, eq


logger = get_logger(__name__)


CHECKINS = "checkins"
STANDUPS = "standups"
PROJECT_CHANNELS = "projectChannels"
BOT_CONFIG = "botConfig"
USERS = "users"

BOT_CONFIG_KEY = "default"


class StandupRepository:
    """Typed access to the bot's collections."""

    def __init__(self, store: RecordStore):
        self.store = store

    # Attendance

    async def save_check_in(self, record: CheckInRecord) -> str:
        """Append a check-in or check-out event and return its ID."""
        record_id = await self.store.append(CHECKINS, record.to_document())
        logger.info(
            "Attendance event saved",
            extra={"user_id": record.user_id, "type": record.type.value, "record_id": record_id}
        )
        return record_id

    async def get_last_check_in(self, user_id: str) -> Optional[CheckInRecord]:
        try:
            documents = await self.store.query_latest(CHECKINS, [eq("user_id", user_id)], limit=1)
        except RecordStoreError as e:
            logger.error("Failed to read last check-in", extra={"user_id": user_id, "error": str(e)})
            return None

        return CheckInRecord.model_validate(documents[0]) if documents else None

    async def is_user_checked_in(self, user_id: str) -> bool:
        """A user is checked in when their latest attendance event is a check-in."""
        last = await self.get_last_check_in(user_id)
        return last is not None and last.type == CheckInType.CHECK_IN

    async def get_user_stats(self, user_id: str, days_back: int = 30) -> Optional[UserStats]:
        since = datetime.now(timezone.utc) - timedelta(days=days_back)
        try:
            documents = await self.store.query_latest(
                CHECKINS,
                [eq("user_id", user_id), FieldFilter("created_at", ">=", since)],
                order_field=None
            )
        except RecordStoreError as e:
            logger.error("Failed to read user stats", extra={"user_id": user_id, "error": str(e)})
            return None

        return UserStats(
            total_check_ins=sum(1 for d in documents if d.get("type") == CheckInType.CHECK_IN.value),
            total_check_outs=sum(1 for d in documents if d.get("type") == CheckInType.CHECK_OUT.value),
            days_tracked=days_back,
        )

    # Standups

    async def save_standup(self, record: StandupRecord) -> str:
        """Persist a finalized standup. Raises RecordStoreError on failure."""
        record_id = await self.store.append(STANDUPS, record.to_document())
        record.id = record_id
        logger.info(
            "Standup saved",
            extra={"user_id": record.user_id, "record_id": record_id, "date": record.date.isoformat()}
        )
        return record_id

    async def get_standup_by_date(self, user_id: str, on: date) -> Optional[StandupRecord]:
        try:
            documents = await self.store.query_latest(
                STANDUPS,
                [eq("user_id", user_id), eq("date", on.isoformat())],
                limit=1
            )
        except RecordStoreError as e:
            logger.error("Failed to read standup", extra={"user_id": user_id, "error": str(e)})
            return None

        return StandupRecord.model_validate(documents[0]) if documents else None

    async def get_standups_by_project(self, project: str, start_date: date, end_date: date) -> List[StandupRecord]:
        """Standups between two dates (inclusive) with at least one task in the project, newest first."""
        try:
            documents = await self.store.query_latest(
                STANDUPS,
                [
                    FieldFilter("date", ">=", start_date.isoformat()),
                    FieldFilter("date", "<=", end_date.isoformat()),
                ]
            )
        except RecordStoreError as e:
            logger.error("Failed to read standups by project", extra={"project": project, "error": str(e)})
            return []

        records = [StandupRecord.model_validate(d) for d in documents]
        return [r for r in records if project in r.projects()]

    # Project channel routing

    async def get_project_channel(self, project_name: str) -> Optional[ProjectChannel]:
        """
        Active channel mapping for a project.

        Store failures propagate; the distributor reports them per project.
        """
        documents = await self.store.query_latest(
            PROJECT_CHANNELS,
            [eq("project_name", project_name), eq("is_active", True)],
            limit=1
        )
        return ProjectChannel.model_validate(documents[0]) if documents else None

    async def get_all_project_channels(self) -> List[ProjectChannel]:
        try:
            documents = await self.store.query_latest(
                PROJECT_CHANNELS,
                [eq("is_active", True)],
                order_field="project_name",
                descending=False
            )
        except RecordStoreError as e:
            logger.error("Failed to read project channels", extra={"error": str(e)})
            return []

        return [ProjectChannel.model_validate(d) for d in documents]

    async def save_project_channel(self, channel: ProjectChannel) -> str:
        """
        Create or update a channel mapping.

        A mapping without an ID replaces the active mapping of the same
        project, so a project routes to at most one active channel.
        """
        if channel.id is None and channel.is_active:
            existing = await self.get_project_channel(channel.project_name)
            if existing is not None:
                channel.id = existing.id

        if channel.id:
            await self.store.upsert_singleton(PROJECT_CHANNELS, channel.id, channel.to_document(), merge=True)
            return channel.id

        return await self.store.append(PROJECT_CHANNELS, channel.to_document())

    # Bot configuration

    async def get_bot_config(self) -> BotConfig:
        """The stored bot configuration, or defaults when absent or unreadable."""
        try:
            document = await self.store.get_singleton(BOT_CONFIG, BOT_CONFIG_KEY)
        except RecordStoreError as e:
            logger.error("Failed to read bot config, using defaults", extra={"error": str(e)})
            return BotConfig()

        if document is None:
            return BotConfig()

        try:
            return BotConfig.model_validate(document)
        except ValidationError as e:
            logger.error("Stored bot config is invalid, using defaults", extra={"error": str(e)})
            return BotConfig()

    async def update_bot_config(self, **changes) -> None:
        """Merge the given fields into the stored configuration."""
        BotConfig.model_validate({**BotConfig().model_dump(), **changes})
        await self.store.upsert_singleton(BOT_CONFIG, BOT_CONFIG_KEY, changes, merge=True)

    # User preferences

    async def get_user_preferences(self, user_id: str) -> Optional[UserPreferences]:
        try:
            document = await self.store.get_singleton(USERS, user_id)
        except RecordStoreError as e:
            logger.error("Failed to read user preferences", extra={"user_id": user_id, "error": str(e)})
            return None

        return UserPreferences.model_validate(document) if document else None

    async def save_user_preferences(self, preferences: UserPreferences) -> None:
        await self.store.upsert_singleton(
            USERS,
            preferences.user_id,
            preferences.model_dump(mode="json"),
            merge=True
        )
