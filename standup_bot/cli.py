# Standup Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""Command-line interface for the standup bot."""

import asyncio
import json
import sys
from datetime import timedelta
from typing import Any, Dict, List, Optional

import click
from dotenv import load_dotenv
from pydantic import ValidationError
from redis.exceptions import RedisError

from standup_bot import __version__
from standup_bot.config import StandupBotConfig
from standup_bot.flow_state import RedisFlowStateStore
from standup_bot.logging_config import LogContext, get_logger, setup_logging
from standup_bot.models import DEFAULT_TIME_ESTIMATES, DEFAULT_TIMEZONE, ProjectChannel, utcnow
from standup_bot.record_store import PostgresRecordStore, RecordStoreError
from standup_bot.repository import StandupRepository


logger = get_logger(__name__)


DEFAULT_PROJECTS = [
    "Project Alpha",
    "Project Beta",
    "Project Gamma",
    "Infrastructure",
    "DevOps",
    "Research",
]

# Placeholder channel IDs, replace with the workspace's real ones
DEFAULT_CHANNELS = [
    {"project_name": "Project Alpha", "channel_id": "C01234ALPHA", "channel_name": "proj-alpha"},
    {"project_name": "Project Beta", "channel_id": "C01234BETA", "channel_name": "proj-beta"},
    {"project_name": "Project Gamma", "channel_id": "C01234GAMMA", "channel_name": "proj-gamma"},
    {"project_name": "Infrastructure", "channel_id": "C01234INFRA", "channel_name": "infrastructure"},
    {"project_name": "DevOps", "channel_id": "C01234DEVOPS", "channel_name": "devops"},
    {"project_name": "Research", "channel_id": "C01234RESEARCH", "channel_name": "research"},
]

SECRET_FIELDS = ("slack_bot_token", "slack_signing_secret", "database_url", "redis_url")


def redact(value: Optional[str]) -> Optional[str]:
    if not value:
        return value
    return value[:4] + "***REDACTED***"


def load_channels(path: Optional[str]) -> List[ProjectChannel]:
    """Channel mappings from a JSON file (a list of objects), or the defaults."""
    if path is None:
        entries: List[Dict[str, Any]] = DEFAULT_CHANNELS
    else:
        with open(path, encoding="utf-8") as f:
            entries = json.load(f)
    return [ProjectChannel.model_validate(entry) for entry in entries]


async def seed_store(
    repository: StandupRepository,
    projects: List[str],
    channels: List[ProjectChannel],
    timezone_name: str
) -> None:
    await repository.update_bot_config(
        projects=projects,
        time_estimates=list(DEFAULT_TIME_ESTIMATES),
        require_standup_on_check_in=True,
        timezone=timezone_name
    )
    click.echo("✅ Bot configuration saved")

    for channel in channels:
        await repository.save_project_channel(channel)
        click.echo(f"   ✓ {channel.project_name} -> #{channel.channel_name}")
    click.echo("✅ Project channels saved")


@click.group()
@click.version_option(version=__version__, prog_name='Standup Bot')
@click.option('--debug', is_flag=True, help='Enable detailed logging for debugging')
@click.pass_context
def cli(ctx, debug: bool):
    """Standup Bot - daily check-ins and standups in Slack.

    \b
    Configuration:
      Settings are read from the environment and from a .env file
      in the working directory.

    \b
    Examples:
      standup-bot serve                 # Run the Slack service
      standup-bot seed                  # Store default projects and channels
      standup-bot sweep --max-age 60    # Remove idle standup sessions
    """
    load_dotenv(override=False)
    ctx.ensure_object(dict)
    ctx.obj['debug'] = debug
    setup_logging(log_level="DEBUG" if debug else "WARNING", log_format="text")


@cli.command()
def serve():
    """Run the Slack event server."""
    from standup_bot.main import main
    main()


@cli.command('show-config')
def show_config():
    """Print the effective configuration with secrets redacted."""
    try:
        config = StandupBotConfig.from_env()
    except KeyError as e:
        click.echo("❌ " + click.style("Configuration Error", fg='red', bold=True), err=True)
        click.echo(f"   Missing required environment variable: {e}", err=True)
        sys.exit(1)

    for name, value in vars(config).items():
        if name in SECRET_FIELDS:
            value = redact(value)
        click.echo(f"{click.style(name, fg='cyan')}: {value}")

    try:
        config.validate()
    except ValueError as e:
        click.echo("⚠️  " + click.style(str(e), fg='yellow'), err=True)
        sys.exit(1)


@cli.command()
@click.option('--database-url', envvar='DATABASE_URL', required=True, help='PostgreSQL connection URL')
@click.option('--channels', 'channels_path', type=click.Path(exists=True, dir_okay=False), metavar='PATH',
              help='JSON file with project channel mappings (default: placeholder mappings)')
@click.option('--project', 'projects', multiple=True, help='Project name (repeatable, default: sample projects)')
@click.option('--timezone', 'timezone_name', default=DEFAULT_TIMEZONE, show_default=True,
              help='IANA timezone used to date standups')
def seed(database_url: str, channels_path: Optional[str], projects: tuple, timezone_name: str):
    """Store the bot configuration and project channel mappings.

    \b
    The channel file is a JSON list such as:
      [{"project_name": "Project Alpha",
        "channel_id": "C01234ALPHA",
        "channel_name": "proj-alpha"}]
    """
    try:
        channels = load_channels(channels_path)
    except (OSError, ValueError, ValidationError) as e:
        click.echo("❌ " + click.style("Invalid channel file", fg='red', bold=True) + f": {e}", err=True)
        sys.exit(1)

    project_names = list(projects) or DEFAULT_PROJECTS

    async def run() -> None:
        async with PostgresRecordStore(database_url) as store:
            await store.initialize_schema()
            await seed_store(StandupRepository(store), project_names, channels, timezone_name)

    with LogContext(command="seed"):
        try:
            asyncio.run(run())
        except RecordStoreError as e:
            logger.error("Seeding failed", extra={"error": str(e), "collection": e.collection})
            click.echo("❌ " + click.style("Seeding failed", fg='red', bold=True) + f": {e}", err=True)
            sys.exit(1)

    if channels_path is None:
        click.echo("⚠️  " + click.style("Placeholder channel IDs were stored.", fg='yellow'))
        click.echo("   Run again with --channels to use your workspace's channel IDs.")


@cli.command()
@click.option('--redis-url', envvar='REDIS_URL', required=True, help='Redis URL holding standup sessions')
@click.option('--max-age', type=int, default=60, show_default=True, metavar='MINUTES',
              help='Remove sessions idle for longer than this')
def sweep(redis_url: str, max_age: int):
    """Remove abandoned standup sessions once."""
    async def run() -> int:
        store = RedisFlowStateStore(redis_url)
        await store.connect()
        try:
            removed = await store.remove_idle(utcnow() - timedelta(minutes=max_age))
        finally:
            await store.disconnect()
        return len(removed)

    with LogContext(command="sweep"):
        try:
            removed = asyncio.run(run())
        except RedisError as e:
            logger.error("Sweep failed", extra={"error": str(e)})
            click.echo("❌ " + click.style("Sweep failed", fg='red', bold=True) + f": {e}", err=True)
            sys.exit(1)
        logger.info("Sweep finished", extra={"removed": removed, "max_age_minutes": max_age})

    click.echo(f"🧹 Removed {removed} idle standup session(s)")


if __name__ == '__main__':
    cli()
