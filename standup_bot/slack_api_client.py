# Standup Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Slack API client with retry logic and error handling.

This module provides a wrapper around the Slack SDK with exponential backoff
retry logic for handling transient failures and rate limits.
"""

import asyncio
import random
from typing import Any, Callable, Dict, List, Optional

import aiohttp
from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient

from standup_bot.logging_config import get_logger


logger = get_logger(__name__)


class SlackAPIRetryError(Exception):
    """Exception raised when Slack API call fails after all retries."""

    def __init__(self, message: str, original_error: Optional[Exception] = None, attempts: int = 0):
        self.message = message
        self.original_error = original_error
        self.attempts = attempts
        super().__init__(message)

    @property
    def slack_error(self) -> Optional[str]:
        """Slack error code (e.g. 'expired_trigger_id') when the API rejected the call."""
        if isinstance(self.original_error, SlackApiError):
            return self.original_error.response.get('error')
        return None


class SlackAPIClient:
    """
    Slack API client with retry logic and error handling.

    This client wraps the Slack SDK and adds:
    - Exponential backoff with jitter for retryable errors
    - Automatic retry for rate limits (429) and server errors
    - Retry for dropped connections and timeouts
    """

    RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
    RETRYABLE_ERRORS = {'internal_error', 'service_unavailable', 'fatal_error', 'ratelimited'}

    def __init__(
        self,
        client: AsyncWebClient,
        max_retries: int = 3,
        retry_backoff_base: float = 2.0
    ):
        """
        Initialize Slack API client.

        Args:
            client: Slack SDK async web client (usually the Bolt app's client)
            max_retries: Retries after the first attempt for transient failures
            retry_backoff_base: Base of the exponential backoff, in seconds
        """
        self.client = client
        self.max_retries = max_retries
        self.retry_backoff_base = retry_backoff_base

        logger.info(
            "Initialized Slack API client",
            extra={
                "max_retries": self.max_retries,
                "backoff_base": self.retry_backoff_base
            }
        )

    def _is_retryable_error(self, error: SlackApiError) -> bool:
        if error.response.status_code in self.RETRYABLE_STATUS_CODES:
            return True
        return error.response.get('error') in self.RETRYABLE_ERRORS

    def _calculate_backoff(self, attempt: int, retry_after: Optional[int] = None) -> float:
        """
        Calculate backoff time with exponential backoff and jitter.

        Args:
            attempt: Current attempt number (0-indexed)
            retry_after: Optional retry-after value from rate limit response

        Returns:
            Backoff time in seconds
        """
        if retry_after is not None:
            base_wait = float(retry_after)
        else:
            base_wait = self.retry_backoff_base ** attempt

        # 10% jitter
        jitter = base_wait * 0.1 * random.random()

        return base_wait + jitter

    async def _retry_api_call(
        self,
        api_method: Callable,
        method_name: str,
        **kwargs
    ) -> Any:
        """
        Execute Slack API call with retry logic.

        Args:
            api_method: Slack API method to call
            method_name: Name of the method (for logging)
            **kwargs: Arguments to pass to the API method

        Returns:
            API response

        Raises:
            SlackAPIRetryError: If call fails after all retries
        """
        last_error = None

        for attempt in range(self.max_retries + 1):
            try:
                logger.debug(
                    f"Calling Slack API: {method_name}",
                    extra={
                        "method": method_name,
                        "attempt": attempt + 1,
                        "max_attempts": self.max_retries + 1
                    }
                )

                return await api_method(**kwargs)

            except SlackApiError as e:
                last_error = e

                if not self._is_retryable_error(e):
                    logger.error(
                        f"Non-retryable Slack API error: {method_name}",
                        extra={
                            "method": method_name,
                            "error": e.response.get('error'),
                            "status_code": e.response.status_code
                        }
                    )
                    raise SlackAPIRetryError(
                        f"Slack API error: {e.response.get('error')}",
                        original_error=e,
                        attempts=attempt + 1
                    ) from e

                retry_after = e.response.headers.get('Retry-After')
                if retry_after:
                    try:
                        retry_after = int(retry_after)
                    except (ValueError, TypeError):
                        retry_after = None

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
                retry_after = None

            if attempt >= self.max_retries:
                logger.error(
                    f"Max retries exceeded for Slack API: {method_name}",
                    extra={
                        "method": method_name,
                        "attempts": attempt + 1,
                        "error": str(last_error)
                    }
                )
                break

            backoff = self._calculate_backoff(attempt, retry_after)

            logger.warning(
                f"Retryable Slack API error, retrying in {backoff:.2f}s",
                extra={
                    "method": method_name,
                    "attempt": attempt + 1,
                    "backoff": backoff,
                    "error": str(last_error)
                }
            )

            await asyncio.sleep(backoff)

        raise SlackAPIRetryError(
            f"Slack API call failed after {self.max_retries + 1} attempts",
            original_error=last_error,
            attempts=self.max_retries + 1
        )

    async def open_view(self, trigger_id: str, view: Dict[str, Any]) -> Dict[str, Any]:
        """
        Open a modal.

        Trigger IDs expire three seconds after the user's action, so an
        expired trigger is reported immediately instead of retried.
        """
        return await self._retry_api_call(
            self.client.views_open,
            "views.open",
            trigger_id=trigger_id,
            view=view
        )

    async def update_view(self, view_id: str, view: Dict[str, Any]) -> Dict[str, Any]:
        """Replace the content of an open modal."""
        return await self._retry_api_call(
            self.client.views_update,
            "views.update",
            view_id=view_id,
            view=view
        )

    async def publish_view(self, user_id: str, view: Dict[str, Any]) -> Dict[str, Any]:
        """Publish a user's App Home tab."""
        return await self._retry_api_call(
            self.client.views_publish,
            "views.publish",
            user_id=user_id,
            view=view
        )

    async def post_message(
        self,
        channel: str,
        text: str,
        blocks: Optional[List[Dict[str, Any]]] = None,
        thread_ts: Optional[str] = None,
        **kwargs
    ) -> Dict[str, Any]:
        """
        Post a message to a Slack channel with retry logic.

        Args:
            channel: Channel ID or user ID (user IDs post to the DM)
            text: Fallback text for the message
            blocks: Optional Block Kit blocks
            thread_ts: Optional thread timestamp for replies

        Raises:
            SlackAPIRetryError: If message posting fails after retries
        """
        return await self._retry_api_call(
            self.client.chat_postMessage,
            "chat.postMessage",
            channel=channel,
            text=text,
            blocks=blocks,
            thread_ts=thread_ts,
            **kwargs
        )

    async def post_ephemeral(
        self,
        channel: str,
        user: str,
        text: str,
        blocks: Optional[List[Dict[str, Any]]] = None,
        **kwargs
    ) -> Dict[str, Any]:
        """Post a message only the given user can see."""
        return await self._retry_api_call(
            self.client.chat_postEphemeral,
            "chat.postEphemeral",
            channel=channel,
            user=user,
            text=text,
            blocks=blocks,
            **kwargs
        )

    async def get_user_info(self, user: str) -> Dict[str, Any]:
        """
        Get information about a Slack user with retry logic.

        Raises:
            SlackAPIRetryError: If user info retrieval fails after retries
        """
        return await self._retry_api_call(
            self.client.users_info,
            "users.info",
            user=user
        )

    async def get_user_profile(self, user: str, fallback_name: str = "User") -> Dict[str, str]:
        """
        Display name and email of a user.

        Falls back to `fallback_name` and an empty email when the profile
        cannot be read.
        """
        try:
            response = await self.get_user_info(user)
        except SlackAPIRetryError as e:
            logger.warning(
                "Could not read user profile",
                extra={"slack_user_id": user, "error": e.message}
            )
            return {"name": fallback_name, "email": ""}

        info = response.get("user") or {}
        profile = info.get("profile") or {}
        return {
            "name": info.get("real_name") or profile.get("real_name") or info.get("name") or fallback_name,
            "email": profile.get("email") or "",
        }
