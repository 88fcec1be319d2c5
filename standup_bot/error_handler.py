# Standup Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Error handling utilities for the standup bot.

Converts exceptions raised while serving a Slack interaction into
user-friendly messages with a suggestion of what to do next.
"""

from typing import Any, Dict, Optional

from standup_bot.form_gateway import FormGatewayError
from standup_bot.logging_config import get_logger, log_error_with_context
from standup_bot.models import SlackMessage
from standup_bot.record_store import RecordStoreError
from standup_bot.slack_api_client import SlackAPIRetryError
from standup_bot.standup_flow import FlowAlreadyActiveError
from standup_bot.templates import ErrorTemplate


logger = get_logger(__name__)


class ErrorHandler:
    """
    Centralized error handler.

    Each handle_* method logs the failure and returns the message to show
    the user, usually as an ephemeral reply.
    """

    def __init__(self):
        self.template = ErrorTemplate()

    def handle_store_error(
        self,
        error: RecordStoreError,
        context: Optional[Dict[str, Any]] = None
    ) -> SlackMessage:
        log_error_with_context(logger, "Record store error", error, **(context or {}))
        return self.template.render(
            error_type="store_unavailable",
            message="We couldn't save your data right now."
        )

    def handle_gateway_error(
        self,
        error: FormGatewayError,
        context: Optional[Dict[str, Any]] = None
    ) -> SlackMessage:
        """
        Handle failures to open or update a form.

        An expired trigger gets its own hint since rerunning the command
        is all it takes.
        """
        logger.warning(
            "Form gateway error",
            extra={
                "operation": error.operation,
                "slack_error": error.slack_error,
                "error_message": error.message,
                **(context or {})
            }
        )

        if error.trigger_expired:
            return self.template.render(
                error_type="form_unavailable",
                message="The form took too long to open."
            )

        return self.template.render(
            error_type="form_unavailable",
            message="The form could not be shown.",
            suggestion="Please try again in a moment."
        )

    def handle_slack_api_error(
        self,
        error: SlackAPIRetryError,
        context: Optional[Dict[str, Any]] = None
    ) -> SlackMessage:
        log_error_with_context(logger, "Slack API error", error, **(context or {}))

        error_code = error.slack_error
        if error_code in ('invalid_auth', 'missing_scope', 'not_authed'):
            return self.template.render(
                error_type="unauthorized",
                message="The bot is not allowed to perform this action."
            )
        if error_code in ('ratelimited', 'rate_limited'):
            return self.template.render(
                error_type="rate_limited",
                message="Slack rate limit exceeded."
            )

        return self.template.render(
            error_type="unknown",
            message="Failed to communicate with Slack after multiple attempts."
        )

    def handle_flow_active(self, error: FlowAlreadyActiveError) -> SlackMessage:
        logger.info(
            "Standup already in progress",
            extra={"user_id": error.user_id, "step": error.step.value}
        )
        return self.template.render(
            error_type="flow_active",
            message="You already have a standup in progress."
        )

    def handle_validation_error(self, message: str, suggestion: Optional[str] = None) -> SlackMessage:
        logger.warning("Validation error", extra={"error_message": message})
        return self.template.render(
            error_type="invalid_command",
            message=message,
            suggestion=suggestion
        )

    def handle_error(self, error: Exception, context: Optional[Dict[str, Any]] = None) -> SlackMessage:
        """Dispatch on the exception type; unknown errors get a generic message."""
        if isinstance(error, RecordStoreError):
            return self.handle_store_error(error, context)
        if isinstance(error, FormGatewayError):
            return self.handle_gateway_error(error, context)
        if isinstance(error, SlackAPIRetryError):
            return self.handle_slack_api_error(error, context)
        if isinstance(error, FlowAlreadyActiveError):
            return self.handle_flow_active(error)
        return self.handle_generic_error(error, context)

    def handle_generic_error(
        self,
        error: Exception,
        context: Optional[Dict[str, Any]] = None
    ) -> SlackMessage:
        log_error_with_context(logger, "Unexpected error", error, **(context or {}))
        return self.template.render(
            error_type="unknown",
            message="An unexpected error occurred while processing your request."
        )

    def get_command_help_message(self, invalid_text: Optional[str] = None) -> SlackMessage:
        if invalid_text:
            message = f"Unknown option: `{invalid_text}`"
        else:
            message = "Invalid command syntax."

        suggestion = (
            "Available commands:\n"
            "• `/checkin` - Start your day\n"
            "• `/checkout` - End your day\n"
            "• `/standup` - Submit your daily standup\n"
            "• `/standup restart` - Discard your standup in progress and start over\n"
            "• `/standup cancel` - Discard your standup in progress\n"
            "• `/status` - Show your attendance and standup status"
        )

        return self.template.render(
            error_type="invalid_command",
            message=message,
            suggestion=suggestion
        )
