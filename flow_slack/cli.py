"""
Slack Notifications CLI

Operator commands for checking a Slack setup outside a pipeline run.
Settings come from the environment (or a ``.env`` file).

Usage:
    flow-slack [OPTIONS] COMMAND [ARGS]...

Commands:
    validate  Check the webhook URL or bot token
    send      Send a text message
    upload    Upload a file (bot token required)
"""

import logging
import sys

import click
from dotenv import load_dotenv

from .config import ConfigurationError, SlackConfig


def setup_logging(verbose: bool):
    """Configure logging to output to stdout."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(message)s',  # Simple format for CLI
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def _load_config() -> SlackConfig:
    try:
        config = SlackConfig.from_env()
    except ConfigurationError as e:
        click.echo(click.style(f"Invalid configuration: {e}", fg="red"))
        raise SystemExit(1)

    if config is None or not config.is_configured:
        click.echo(click.style(
            "Slack is not configured. Set SLACK_WEBHOOK_URL, or SLACK_BOT_TOKEN and SLACK_BOT_CHANNEL.",
            fg="red",
        ))
        raise SystemExit(1)
    return config


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Verbose output (show DEBUG logs)')
@click.option('-q', '--quiet', is_flag=True, help='Quiet mode (only show warnings/errors)')
@click.pass_context
def cli(ctx, verbose, quiet):
    """Slack notifications for pipeline runs."""
    load_dotenv()

    if quiet:
        logging.basicConfig(level=logging.WARNING, format='%(message)s')
    else:
        setup_logging(verbose)

    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose


@cli.command()
def validate():
    """Check the configured webhook URL or bot token."""
    config = _load_config()
    sender = config.create_sender()
    try:
        if not sender.validate():
            click.echo(click.style("Validation failed.", fg="red"))
            raise SystemExit(1)
    finally:
        sender.close()

    mode = "bot token" if config.is_bot else "webhook"
    click.echo(click.style(f"Slack {mode} is valid.", fg="green"))


@cli.command()
@click.argument('text')
def send(text):
    """Send TEXT as a plain message."""
    from .slack.blocks import SlackMessageBuilder

    config = _load_config()
    sender = config.create_sender()
    try:
        payload = SlackMessageBuilder(config).build_simple_message(text)
        if not sender.send_message(payload):
            click.echo(click.style("Message was not delivered.", fg="red"))
            raise SystemExit(1)
    finally:
        sender.close()

    click.echo(click.style("Message sent.", fg="green"))


@cli.command()
@click.argument('path', type=click.Path(dir_okay=False))
@click.option('--title', default=None, help='Title shown in Slack')
@click.option('--comment', default=None, help='Comment posted with the file')
def upload(path, title, comment):
    """Upload the file at PATH to the bot channel."""
    config = _load_config()
    sender = config.create_sender()
    try:
        if not sender.upload_file(path, title=title, comment=comment):
            click.echo(click.style("Upload failed.", fg="red"))
            raise SystemExit(1)
    finally:
        sender.close()

    click.echo(click.style(f"Uploaded {path}.", fg="green"))


if __name__ == '__main__':
    cli()
