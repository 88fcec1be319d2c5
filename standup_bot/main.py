# Standup Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Main entry point for the standup bot service.

Wires the stores, the Slack client and the standup services together and
serves Slack's HTTP events next to a health check endpoint.
"""

from dataclasses import dataclass
from typing import Optional

from aiohttp import web
from dotenv import load_dotenv
from slack_bolt.async_app import AsyncApp

from standup_bot.config import StandupBotConfig
from standup_bot.dispatcher import StandupDispatcher
from standup_bot.distribution import StandupDistributor
from standup_bot.error_handler import ErrorHandler
from standup_bot.flow_state import FlowStateStore, create_flow_state_store
from standup_bot.form_gateway import SlackFormGateway
from standup_bot.logging_config import get_logger, setup_logging
from standup_bot.message_formatter import MessageFormatter
from standup_bot.record_store import PostgresRecordStore, RecordStore, create_record_store
from standup_bot.repository import StandupRepository
from standup_bot.session_sweeper import SessionSweeper
from standup_bot.slack_api_client import SlackAPIClient
from standup_bot.standup_flow import StandupFlowService


logger = get_logger(__name__)


SLACK_EVENTS_PATH = "/slack/events"


@dataclass
class BotServices:
    """Everything the running service owns."""
    config: StandupBotConfig
    app: AsyncApp
    record_store: RecordStore
    flow_state: FlowStateStore
    repository: StandupRepository
    flow_service: StandupFlowService
    sweeper: SessionSweeper
    dispatcher: StandupDispatcher


def load_config() -> StandupBotConfig:
    """Read .env (without overriding the environment) and validate the configuration."""
    load_dotenv(override=False)

    try:
        config = StandupBotConfig.from_env()
        config.validate()
    except KeyError as e:
        logger.error(f"Missing required environment variable: {e}")
        raise
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        raise

    return config


def build_services(config: StandupBotConfig, app: Optional[AsyncApp] = None) -> BotServices:
    """Create and connect the bot's components. Nothing is started yet."""
    if app is None:
        app = AsyncApp(token=config.slack_bot_token, signing_secret=config.slack_signing_secret)

    slack_client = SlackAPIClient(
        app.client,
        max_retries=config.max_retries,
        retry_backoff_base=config.retry_backoff_base
    )
    # Forms and channel posts are attempted once; a retried chat.postMessage can duplicate a summary
    gateway = SlackFormGateway(SlackAPIClient(app.client, max_retries=0))
    formatter = MessageFormatter()

    record_store = create_record_store(config.database_url)
    flow_state = create_flow_state_store(config.redis_url)
    repository = StandupRepository(record_store)
    distributor = StandupDistributor(repository, gateway, formatter)
    flow_service = StandupFlowService(
        flow_state,
        repository,
        gateway,
        distributor,
        formatter=formatter,
        fan_out_in_background=True
    )
    sweeper = SessionSweeper(
        flow_service,
        max_age_minutes=config.session_max_age_minutes,
        interval_seconds=config.sweep_interval_minutes * 60
    )

    dispatcher = StandupDispatcher(flow_service, repository, slack_client, formatter, ErrorHandler())
    dispatcher.register(app)

    return BotServices(
        config=config,
        app=app,
        record_store=record_store,
        flow_state=flow_state,
        repository=repository,
        flow_service=flow_service,
        sweeper=sweeper,
        dispatcher=dispatcher
    )


def create_web_app(services: BotServices) -> web.Application:
    """aiohttp application serving Slack events and /health."""
    web_app = services.app.web_app(path=SLACK_EVENTS_PATH, port=services.config.port)

    async def health_check(request: web.Request) -> web.Response:
        return web.json_response({"status": "healthy", "service": "standup-bot"})

    async def on_startup(app: web.Application) -> None:
        if isinstance(services.record_store, PostgresRecordStore):
            await services.record_store.connect()
            await services.record_store.initialize_schema()
        await services.flow_state.connect()
        await services.sweeper.start()
        logger.info("Standup bot service started", extra={"port": services.config.port})

    async def on_cleanup(app: web.Application) -> None:
        await services.sweeper.stop()
        await services.flow_service.drain()
        await services.flow_state.disconnect()
        await services.record_store.close()
        logger.info("Standup bot service stopped")

    web_app.router.add_get('/health', health_check)
    web_app.on_startup.append(on_startup)
    web_app.on_cleanup.append(on_cleanup)
    return web_app


def main() -> None:
    """Main application entry point."""
    config = load_config()
    setup_logging(log_level=config.log_level, log_format=config.log_format)

    logger.info("Starting standup bot service", extra={
        'database': 'postgres' if config.database_url else 'memory',
        'flow_state': 'redis' if config.redis_url else 'memory',
    })

    services = build_services(config)
    web.run_app(create_web_app(services), port=config.port)


if __name__ == "__main__":
    main()
