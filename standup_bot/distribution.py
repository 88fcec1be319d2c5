# Standup Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Distribution of finished standups to project channels.

Each project referenced by a standup is looked up in the channel routing
table and the summary is posted to its channel. Projects are handled one
by one and independently: an unmapped project is skipped and a failed
lookup or post is logged and reported without affecting the others.
"""

from dataclasses import dataclass, field
from typing import List, Set

from pydantic import ValidationError

from standup_bot.form_gateway import FormGateway, FormGatewayError
from standup_bot.logging_config import get_logger
from standup_bot.message_formatter import MessageFormatter
from standup_bot.models import StandupRecord
from standup_bot.record_store import RecordStoreError
from standup_bot.repository import StandupRepository


logger = get_logger(__name__)


@dataclass
class ChannelDelivery:
    project: str
    channel_id: str
    channel_name: str


@dataclass
class DeliveryFailure:
    project: str
    error: str
    channel_id: str = ""


@dataclass
class DistributionReport:
    """What happened to each project of a distributed standup."""
    posted: List[ChannelDelivery] = field(default_factory=list)
    unmapped: List[str] = field(default_factory=list)
    failed: List[DeliveryFailure] = field(default_factory=list)

    @property
    def post_count(self) -> int:
        return len(self.posted)


class StandupDistributor:
    """Posts standup summaries to the channels of the projects they mention."""

    def __init__(
        self,
        repository: StandupRepository,
        gateway: FormGateway,
        formatter: MessageFormatter
    ):
        self.repository = repository
        self.gateway = gateway
        self.formatter = formatter

    async def distribute(self, record: StandupRecord) -> DistributionReport:
        """
        Post the full summary once to each mapped project channel.

        Projects are visited in the order they first appear in the record.
        A channel mapped to several of the record's projects receives one
        post. Never raises.
        """
        report = DistributionReport()
        projects = record.projects()
        if not projects:
            logger.debug("Standup has no tasks, nothing to distribute", extra={"user_id": record.user_id})
            return report

        message = self.formatter.format_standup_summary(record)
        delivered_channels: Set[str] = set()

        for project in projects:
            try:
                mapping = await self.repository.get_project_channel(project)
            except (RecordStoreError, ValidationError) as e:
                logger.error(
                    "Channel lookup failed",
                    extra={"project": project, "user_id": record.user_id, "error": str(e)}
                )
                report.failed.append(DeliveryFailure(project=project, error=str(e)))
                continue
            except Exception as e:
                logger.error(
                    "Unexpected error looking up project channel",
                    extra={"project": project, "user_id": record.user_id, "error": str(e)},
                    exc_info=True
                )
                report.failed.append(DeliveryFailure(project=project, error=str(e) or type(e).__name__))
                continue

            if mapping is None:
                logger.debug("No active channel for project", extra={"project": project})
                report.unmapped.append(project)
                continue

            if mapping.channel_id in delivered_channels:
                continue

            try:
                await self.gateway.post_message(mapping.channel_id, message)
            except FormGatewayError as e:
                logger.error(
                    "Failed to post standup summary",
                    extra={
                        "project": project,
                        "channel_id": mapping.channel_id,
                        "channel_name": mapping.channel_name,
                        "user_id": record.user_id,
                        "error": e.message
                    }
                )
                report.failed.append(
                    DeliveryFailure(project=project, error=e.message, channel_id=mapping.channel_id)
                )
                continue
            except Exception as e:
                logger.error(
                    "Unexpected error posting standup summary",
                    extra={"project": project, "channel_id": mapping.channel_id, "error": str(e)},
                    exc_info=True
                )
                report.failed.append(
                    DeliveryFailure(project=project, error=str(e) or type(e).__name__, channel_id=mapping.channel_id)
                )
                continue

            delivered_channels.add(mapping.channel_id)
            report.posted.append(
                ChannelDelivery(project=project, channel_id=mapping.channel_id, channel_name=mapping.channel_name)
            )

        logger.info(
            "Standup distributed",
            extra={
                "user_id": record.user_id,
                "record_id": record.id,
                "posted": len(report.posted),
                "unmapped": len(report.unmapped),
                "failed": len(report.failed)
            }
        )
        return report
