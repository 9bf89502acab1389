"""
Command line entry point.

    zulip-pusher serve                 run the HTTP API
    zulip-pusher poll-once             run one poller invocation (all rounds)
    zulip-pusher listen                long-poll one account and print notifications
    zulip-pusher generate-vapid-keys   print a fresh VAPID key pair
"""

import asyncio
import json
import sys
from pathlib import Path

import click

from zulip_pusher import __version__
from zulip_pusher.configs import configs
from zulip_pusher.core.filters import FilterSettings
from zulip_pusher.core.logger import setup_logging
from zulip_pusher.core.notification.formatter import NotificationData, notification_to_dict
from zulip_pusher.core.notification.vapid import VapidKeyPair


@click.group()
@click.version_option(version=__version__, prog_name="zulip-pusher")
@click.option("--log-level", default=None, help="Override PUSHER_LOGLEVEL for this run.")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None) -> None:
    """Zulip notification bridge: filtered local and Web Push notifications."""
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level.upper() if log_level else None


@cli.command()
def serve() -> None:
    """Run the cloud worker HTTP API with uvicorn."""
    from zulip_pusher.main import run

    run()


@cli.command("poll-once")
@click.pass_context
def poll_once(ctx: click.Context) -> None:
    """
    Run one scheduler invocation in the foreground.

    Useful without Celery beat, e.g. from cron every TriggerIntervalSecs.
    """
    from zulip_pusher.tasks.poll import run_poll_invocation

    setup_logging(ctx.obj["log_level"])
    asyncio.run(run_poll_invocation())


class EchoNotifier:
    """Prints notifications instead of showing them on a device."""

    def __init__(self, as_json: bool = False):
        self.as_json = as_json

    async def show(self, notification: NotificationData) -> None:
        if self.as_json:
            click.echo(json.dumps(notification_to_dict(notification), ensure_ascii=False))
            return
        click.echo(click.style(notification.title, bold=True))
        click.echo(f"  {notification.body}")


@cli.command()
@click.option("--server", "server_url", required=True, envvar="ZULIP_SITE", help="Zulip server URL.")
@click.option("--email", required=True, envvar="ZULIP_EMAIL", help="Zulip account email.")
@click.option("--api-key", required=True, envvar="ZULIP_API_KEY", help="Zulip API key.")
@click.option(
    "--filters",
    "filters_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="JSON file with filter settings (camelCase keys).",
)
@click.option("--keepalive", type=int, default=None, help="Long-poll blocking timeout in seconds.")
@click.option("--json", "as_json", is_flag=True, help="Print notifications as JSON lines.")
@click.pass_context
def listen(
    ctx: click.Context,
    server_url: str,
    email: str,
    api_key: str,
    filters_path: Path | None,
    keepalive: int | None,
    as_json: bool,
) -> None:
    """
    Connect one account and print notifications as they arrive.

    Runs until interrupted with Ctrl+C.
    """
    from zulip_pusher.core.zulip.events import ZulipCredentials
    from zulip_pusher.core.zulip.session import ConnectionState, NotificationSession, SessionContext

    setup_logging(ctx.obj["log_level"])

    settings = FilterSettings.from_stored(filters_path.read_text("utf-8")) if filters_path else FilterSettings()
    session = NotificationSession(
        EchoNotifier(as_json),
        SessionContext(settings=settings, keepalive_secs=keepalive or configs.Client.KeepaliveSecs),
        backoff_secs=configs.Client.ErrorBackoffSecs,
        abort_margin=configs.Client.AbortMarginSecs,
    )

    async def _run() -> int:
        try:
            if not await session.connect(ZulipCredentials(server_url, email, api_key)):
                click.echo(click.style("Error: ", fg="red", bold=True) + str(session.last_error))
                return 1
            click.echo("Listening, press Ctrl+C to stop")
            await session.wait_closed()
            if session.state == ConnectionState.ERROR:
                click.echo(click.style("Error: ", fg="red", bold=True) + str(session.last_error))
                return 1
            return 0
        finally:
            await session.disconnect()

    try:
        sys.exit(asyncio.run(_run()))
    except KeyboardInterrupt:
        click.echo("Stopped")


@cli.command("generate-vapid-keys")
def generate_vapid_keys() -> None:
    """Print a new VAPID key pair as environment assignments."""
    pair = VapidKeyPair.generate()
    click.echo(f"PUSHER_VAPID_PUBLICKEY={pair.public_key_b64}")
    click.echo(f"PUSHER_VAPID_PRIVATEKEY={pair.private_key_b64}")


if __name__ == "__main__":
    cli()
