"""CLI entry point: command definitions using Click.

Commands:
    init          Generate a template config file
    preview       Generate (and cache) one user's weekly report
    send          Deliver one user's weekly report
    send-all      Run the weekly report job once
    retry         Redeliver a failed report from the delivery log
    sync-users    Sync Slack users with Linear accounts
    cooldown      Set, show or clear a user's cooldown schedule
    schedule      Run both jobs on their cron schedules (blocks)
"""

import functools
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

import click

from rundown import __version__

log = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


# ---------------------------------------------------------------------------
# Helpers shared by all data commands
# ---------------------------------------------------------------------------

def _load_config(ctx: click.Context):
    """Load config, set up logging and open the store. Exits on error."""
    from rundown.config import ConfigError, load
    from rundown.store import FileStore

    obj = ctx.obj
    try:
        config = load(obj["config_path"])
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)

    level = logging.DEBUG if obj["verbose"] else config.log_level_number
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)
    log.debug("Using store at %s", config.store_path)

    return config, FileStore(config.store_path)


def _make_clients(config):
    """Return ``(slack, linear)`` clients built from *config*."""
    from rundown.linear import LinearClient
    from rundown.slack import SlackClient

    slack = SlackClient(config.slack_bot_token, rate_limit_delay=config.rate_limit_delay)
    linear = LinearClient(config.linear_api_key, endpoint=config.linear_endpoint)
    return slack, linear


def _emit_json(data: Any, ctx: click.Context) -> None:
    """Write JSON to stdout or to the file specified by --output."""
    obj = ctx.obj
    indent = 2 if obj["pretty"] else None
    text = json.dumps(data, indent=indent, ensure_ascii=False)

    output_path: str | None = obj["output_path"]
    if output_path:
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(text)
        click.echo(f"Output written to '{output_path}'", err=True)
    else:
        click.echo(text)


def _handle_errors(func):
    """Decorator that turns known exceptions into a message and exit code 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        from rundown.client import (
            AuthenticationError,
            ClientError,
            NetworkError,
            NotFoundError,
        )
        from rundown.cooldown import CooldownValidationError
        from rundown.delivery import DeliveryError
        from rundown.reports.weekly import ReportError
        from rundown.scheduler import InvalidScheduleError
        from rundown.store import StoreError, UserNotFoundError

        try:
            return func(*args, **kwargs)
        except UserNotFoundError as exc:
            click.echo(f"User error: {exc}", err=True)
            sys.exit(1)
        except CooldownValidationError as exc:
            click.echo(f"Invalid cooldown: {exc}", err=True)
            sys.exit(1)
        except InvalidScheduleError as exc:
            click.echo(f"Schedule error: {exc}", err=True)
            sys.exit(1)
        except ReportError as exc:
            click.echo(f"Report error: {exc}", err=True)
            sys.exit(1)
        except DeliveryError as exc:
            click.echo(f"Delivery error: {exc}", err=True)
            sys.exit(1)
        except StoreError as exc:
            click.echo(f"Store error: {exc}", err=True)
            sys.exit(1)
        except AuthenticationError as exc:
            click.echo(f"Authentication error: {exc}", err=True)
            sys.exit(1)
        except NotFoundError as exc:
            click.echo(f"Not found: {exc}", err=True)
            sys.exit(1)
        except NetworkError as exc:
            click.echo(f"Network error: {exc}", err=True)
            sys.exit(1)
        except ClientError as exc:
            click.echo(f"API error: {exc}", err=True)
            sys.exit(1)

    return wrapper


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------

@click.group()
@click.option("--config", "config_path", default="rundown-config.yaml", show_default=True,
              help="Path to the configuration file.")
@click.option("--output", "output_path", default=None,
              help="Write JSON output to a file instead of stdout.")
@click.option("--pretty", is_flag=True, default=False,
              help="Pretty-print the JSON output.")
@click.option("--verbose", is_flag=True, default=False,
              help="Enable debug logging.")
@click.version_option(__version__, prog_name="rundown")
@click.pass_context
def cli(ctx: click.Context, config_path: str, output_path: str | None,
        pretty: bool, verbose: bool) -> None:
    """Weekly Linear status reports, delivered as Slack direct messages."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["output_path"] = output_path
    ctx.obj["pretty"] = pretty
    ctx.obj["verbose"] = verbose


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------

@cli.command("init")
@click.option("--output", "output_path", default="rundown-config.yaml", show_default=True,
              help="Path where the template config file will be written.")
def init_command(output_path: str) -> None:
    """Generate a template rundown-config.yaml file."""
    from rundown.config import ConfigError, generate_template
    try:
        generate_template(output_path)
        click.echo(f"Template written to '{output_path}'.")
        click.echo("Edit it with your Slack bot token and Linear API key.")
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


# ---------------------------------------------------------------------------
# preview / send / send-all / retry
# ---------------------------------------------------------------------------

@cli.command("preview")
@click.argument("user_ref", metavar="USER")
@click.option("--text", "as_text", is_flag=True, default=False,
              help="Print the report text instead of JSON metadata.")
@click.pass_context
@_handle_errors
def preview_command(ctx: click.Context, user_ref: str, as_text: bool) -> None:
    """Generate USER's weekly report without sending it."""
    from rundown.delivery import ReportDeliveryService

    config, store = _load_config(ctx)
    slack, linear = _make_clients(config)
    user = store.find_user(user_ref)

    result = ReportDeliveryService(slack, linear, store).preview_report(user)
    if as_text:
        click.echo(result.report_text)
    else:
        _emit_json(result.to_dict(), ctx)


@cli.command("send")
@click.argument("user_ref", metavar="USER")
@click.pass_context
@_handle_errors
def send_command(ctx: click.Context, user_ref: str) -> None:
    """Deliver USER's weekly report now."""
    from rundown.delivery import ReportDeliveryService
    from rundown.models import DeliveryStatus

    config, store = _load_config(ctx)
    slack, linear = _make_clients(config)
    user = store.find_user(user_ref)

    result = ReportDeliveryService(slack, linear, store).deliver_report(user)
    _emit_json(result.to_dict(), ctx)
    if result.status is DeliveryStatus.FAILED:
        sys.exit(1)


@cli.command("send-all")
@click.pass_context
@_handle_errors
def send_all_command(ctx: click.Context) -> None:
    """Deliver the weekly report to every opted-in user."""
    from rundown.scheduler import run_weekly_report

    config, store = _load_config(ctx)
    slack, linear = _make_clients(config)

    run = run_weekly_report(slack, linear, store)
    _emit_json(run.to_dict(), ctx)


@cli.command("retry")
@click.argument("log_id", type=int)
@click.option("--max-retries", default=3, show_default=True, type=click.IntRange(min=1),
              help="Delivery attempts before giving up.")
@click.pass_context
@_handle_errors
def retry_command(ctx: click.Context, log_id: int, max_retries: int) -> None:
    """Redeliver the report behind failed delivery-log entry LOG_ID."""
    from rundown.delivery import ReportDeliveryService
    from rundown.models import DeliveryStatus

    config, store = _load_config(ctx)
    slack, linear = _make_clients(config)

    result = ReportDeliveryService(slack, linear, store).retry_failed_delivery(
        log_id, max_retries=max_retries
    )
    _emit_json(result.to_dict(), ctx)
    if result.status is DeliveryStatus.FAILED:
        sys.exit(1)


# ---------------------------------------------------------------------------
# sync-users
# ---------------------------------------------------------------------------

@cli.command("sync-users")
@click.pass_context
@_handle_errors
def sync_users_command(ctx: click.Context) -> None:
    """Import Slack users and map them to Linear accounts by e-mail."""
    from rundown.sync import sync_users

    config, store = _load_config(ctx)
    slack, linear = _make_clients(config)

    result = sync_users(slack, linear, store)
    _emit_json(result.to_dict(), ctx)


# ---------------------------------------------------------------------------
# cooldown
# ---------------------------------------------------------------------------

@cli.group("cooldown")
def cooldown_group() -> None:
    """Manage a user's cooldown schedule."""


def _cooldown_payload(user, schedule) -> dict:
    from rundown.cooldown import status_for_schedule

    status = status_for_schedule(schedule, datetime.now(timezone.utc))
    return {
        "user_id": user.id,
        "email": user.email,
        "next_cooldown_start": schedule.next_cooldown_start.isoformat() if schedule else None,
        "cooldown_duration_weeks": schedule.cooldown_duration_weeks if schedule else None,
        "is_in_cooldown": status.is_in_cooldown,
        "week_number": status.week_number,
        "total_weeks": status.total_weeks,
        "end_date": status.end_date.isoformat() if status.end_date else None,
    }


@cooldown_group.command("set")
@click.argument("user_ref", metavar="USER")
@click.argument("start")
@click.argument("weeks")
@click.pass_context
@_handle_errors
def cooldown_set_command(ctx: click.Context, user_ref: str, start: str, weeks: str) -> None:
    """Schedule a WEEKS-long cooldown for USER starting on START (YYYY-MM-DD)."""
    _, store = _load_config(ctx)
    user = store.find_user(user_ref)
    schedule = store.set_cooldown_schedule(user.id, start, weeks)
    _emit_json(_cooldown_payload(user, schedule), ctx)


@cooldown_group.command("show")
@click.argument("user_ref", metavar="USER")
@click.pass_context
@_handle_errors
def cooldown_show_command(ctx: click.Context, user_ref: str) -> None:
    """Show USER's cooldown schedule and whether it is active today."""
    _, store = _load_config(ctx)
    user = store.find_user(user_ref)
    _emit_json(_cooldown_payload(user, store.get_cooldown_schedule(user.id)), ctx)


@cooldown_group.command("clear")
@click.argument("user_ref", metavar="USER")
@click.pass_context
@_handle_errors
def cooldown_clear_command(ctx: click.Context, user_ref: str) -> None:
    """Remove USER's cooldown schedule."""
    _, store = _load_config(ctx)
    user = store.find_user(user_ref)
    if store.delete_cooldown_schedule(user.id):
        click.echo(f"Cooldown schedule cleared for {user.email}.")
    else:
        click.echo(f"{user.email} has no cooldown schedule.")


# ---------------------------------------------------------------------------
# schedule
# ---------------------------------------------------------------------------

@cli.command("schedule")
@click.pass_context
@_handle_errors
def schedule_command(ctx: click.Context) -> None:
    """Run the weekly report and user sync jobs on their cron schedules."""
    from rundown.scheduler import create_scheduler

    config, store = _load_config(ctx)
    slack, linear = _make_clients(config)

    scheduler = create_scheduler(
        slack, linear, store,
        report_cron=config.report_schedule,
        sync_cron=config.sync_schedule,
        tz=config.timezone,
    )
    click.echo(
        f"Weekly report: '{config.report_schedule}', user sync: '{config.sync_schedule}' "
        f"({config.timezone}). Press Ctrl+C to stop.",
        err=True,
    )
    try:
        scheduler.start()
    except KeyboardInterrupt:
        click.echo("Scheduler stopped.", err=True)
