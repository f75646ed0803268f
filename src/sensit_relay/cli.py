"""Click CLI for sensit-relay.

Entry point registered in ``pyproject.toml`` as ``sensit-relay``.

Subcommands::

    sensit-relay normalize BODY.json   # print the flat record for a callback body
    sensit-relay callback BODY.json    # run the full callback pipeline
    sensit-relay presence              # run one presence session (as a re-arm would)
    sensit-relay --validate-config     # validate config and exit
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import click
import orjson

from sensit_relay import __version__
from sensit_relay.classifier import classify
from sensit_relay.config import AppConfig, load_config, resolve_config_path
from sensit_relay.errors import MalformedSensorData
from sensit_relay.logs import setup_logging
from sensit_relay.orchestrator import run_callback
from sensit_relay.rearm import handle_rearm_message
from sensit_relay.transform import normalize

logger = logging.getLogger("sensit_relay")


@click.group(invoke_without_command=True)
@click.option("-c", "--config", "config_path", default=None, help="Config file path.")
@click.option("--log-level", default=None,
              type=click.Choice(["debug", "info", "warn", "error"]),
              help="Log verbosity.")
@click.option("--validate-config", "validate_only", is_flag=True,
              help="Validate config and exit.")
@click.option("--presence-token", default=None, help="Override the presence token.")
@click.version_option(__version__)
@click.pass_context
def main(
    ctx: click.Context,
    config_path: Optional[str],
    log_level: Optional[str],
    validate_only: bool,
    presence_token: Optional[str],
) -> None:
    """sensit-relay: Sensit callback relay and presence keeper."""
    overrides: dict[str, str] = {}
    if presence_token:
        overrides["SLACK_BOT_TOKEN"] = presence_token

    cfg_path = resolve_config_path(config_path)
    try:
        cfg = load_config(cfg_path, overrides=overrides)
    except Exception as exc:
        click.echo(f"Config error: {exc}", err=True)
        raise SystemExit(1) from exc

    setup_logging(cfg, log_level)

    if validate_only:
        click.echo("Configuration is valid.", err=True)
        raise SystemExit(0)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        return

    ctx.obj = cfg
    logger.debug("Starting sensit-relay %s (config=%s)", __version__, cfg_path)


@main.command("normalize")
@click.argument("body", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_obj
def normalize_cmd(cfg: AppConfig, body: Path) -> None:
    """Print the flat record built from a callback BODY file."""
    try:
        record = normalize(
            classify(body.read_bytes()), strict=cfg.normalize.strict_magnet_data
        )
    except MalformedSensorData as exc:
        click.echo(f"Rejected callback body: {exc}", err=True)
        raise SystemExit(1) from exc
    if record is None:
        click.echo("No device in callback body, nothing to normalize.", err=True)
        raise SystemExit(1)
    click.echo(orjson.dumps(record, option=orjson.OPT_INDENT_2).decode())


@main.command("callback")
@click.argument("body", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_obj
def callback_cmd(cfg: AppConfig, body: Path) -> None:
    """Run the callback pipeline for a BODY file and print the outward reply."""
    outcome = asyncio.run(run_callback(cfg, classify(body.read_bytes())))
    for step in outcome.steps:
        status = "ok" if step.ok else f"failed ({step.kind.value})"
        click.echo(f"{step.step}: {status}", err=True)
    click.echo(orjson.dumps(outcome.body).decode())


@main.command("presence")
@click.pass_obj
def presence_cmd(cfg: AppConfig) -> None:
    """Run one presence session and exit."""
    session = asyncio.run(handle_rearm_message(cfg))
    if session is None or session.reason is None:
        raise SystemExit(1)
    click.echo(f"{session.reason.value} (rearmed={session.rearmed})")
