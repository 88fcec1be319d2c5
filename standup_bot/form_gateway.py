# Standup Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Form gateway: how the standup flow shows forms and posts messages.

The flow service only describes views (Block Kit modal payloads) and
messages; the gateway puts them in front of the user.
"""

from typing import Any, Dict, Optional, Protocol

from standup_bot.logging_config import get_logger
from standup_bot.models import SlackMessage
from standup_bot.slack_api_client import SlackAPIClient, SlackAPIRetryError


logger = get_logger(__name__)


class FormGatewayError(Exception):
    """Exception raised when a form or message cannot be delivered."""

    def __init__(self, message: str, operation: str, slack_error: Optional[str] = None):
        self.message = message
        self.operation = operation
        self.slack_error = slack_error
        super().__init__(message)

    @property
    def trigger_expired(self) -> bool:
        return self.slack_error == "expired_trigger_id"


class FormGateway(Protocol):
    """Presentation surface used by the standup flow."""

    async def open(self, trigger_id: str, view: Dict[str, Any]) -> str:
        """Show a new form and return its view ID."""
        ...

    async def update(self, view_id: str, view: Dict[str, Any]) -> None:
        """Replace the content of an open form."""
        ...

    async def post_message(self, channel: str, message: SlackMessage) -> None:
        """Post a one-way message to a channel or user."""
        ...


class SlackFormGateway:
    """FormGateway over Slack modals and chat messages."""

    def __init__(self, slack_client: SlackAPIClient):
        self.slack_client = slack_client

    async def open(self, trigger_id: str, view: Dict[str, Any]) -> str:
        try:
            response = await self.slack_client.open_view(trigger_id, view)
        except SlackAPIRetryError as e:
            raise FormGatewayError(f"Could not open form: {e.message}", "open", e.slack_error) from e
        return response["view"]["id"]

    async def update(self, view_id: str, view: Dict[str, Any]) -> None:
        try:
            await self.slack_client.update_view(view_id, view)
        except SlackAPIRetryError as e:
            raise FormGatewayError(f"Could not update form: {e.message}", "update", e.slack_error) from e

    async def post_message(self, channel: str, message: SlackMessage) -> None:
        try:
            await self.slack_client.post_message(
                channel=channel,
                text=message.text,
                blocks=message.blocks or None,
                thread_ts=message.thread_ts
            )
        except SlackAPIRetryError as e:
            raise FormGatewayError(
                f"Could not post message to {channel}: {e.message}",
                "post_message",
                e.slack_error
            ) from e
