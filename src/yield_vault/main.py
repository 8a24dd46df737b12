"""CLI entrypoint for the yield vault monitor."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Annotated

import typer

from .constants import AUTO_YIELD_VAULT
from .logger import setup_logging
from .settings import RunMode, VaultSettings
from .state import AppState

app = typer.Typer(
    add_completion=False,
    no_args_is_help=False,
    add_help_option=True,
    pretty_exceptions_enable=True,
    pretty_exceptions_short=True,
    pretty_exceptions_show_locals=False,
    rich_markup_mode="rich",
    help="Watch a yield optimizer vault and track its rebalances.",
)


def _build_logger() -> logging.Logger:
    """Build a logger instance."""
    return logging.getLogger("yield_vault")


def build_settings(init_kwargs: dict) -> VaultSettings:
    """Load settings and fill in the deployed vault when live mode has none."""
    settings = VaultSettings(**init_kwargs)
    if settings.mode is RunMode.LIVE and settings.vault_address is None:
        settings.vault_address = AUTO_YIELD_VAULT
    return settings


@app.callback(invoke_without_command=True)
def monitor(
    config_path: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="Path to a TOML config file (can include [yield_vault] table).",
        ),
    ] = None,
    mode: Annotated[
        RunMode | None,
        typer.Option(
            "--mode",
            "-m",
            help="auto (live when a vault address is set), live, or simulated.",
        ),
    ] = None,
    vault_address: Annotated[
        str | None,
        typer.Option("--vault-address", help="AutoYieldVault contract to watch."),
    ] = None,
    rpc: Annotated[
        list[str] | None,
        typer.Option(
            "--rpc",
            help="RPC endpoint; repeat to give an ordered fallback list.",
        ),
    ] = None,
    poll_interval: Annotated[
        float | None,
        typer.Option("--poll-interval", help="Seconds between live vault reads."),
    ] = None,
    rpc_timeout: Annotated[
        float | None,
        typer.Option("--rpc-timeout", help="Timeout in seconds for one endpoint attempt."),
    ] = None,
    seed: Annotated[
        int | None,
        typer.Option("--seed", help="Seed for simulated rate drift."),
    ] = None,
    duration: Annotated[
        float | None,
        typer.Option("--duration", help="Stop after this many seconds."),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            help="Override logging verbosity (TRACE, DEBUG, INFO, WARNING, ERROR, CRITICAL).",
        ),
    ] = None,
    show_config: Annotated[
        bool,
        typer.Option(
            "--show-config",
            help="Print effective config (with RPC URLs redacted) and exit.",
        ),
    ] = False,
):
    """Poll the vault, decide on rebalances and log the lifecycle."""
    if config_path:
        os.environ["YIELD_VAULT_CONFIG"] = str(config_path)

    init_kwargs: dict[str, object] = {}
    if mode is not None:
        init_kwargs["mode"] = mode
    if vault_address is not None:
        init_kwargs["vault_address"] = vault_address
    if rpc:
        init_kwargs["rpc_endpoints"] = rpc
    if poll_interval is not None:
        init_kwargs["poll_interval_seconds"] = poll_interval
    if rpc_timeout is not None:
        init_kwargs["rpc_timeout_seconds"] = rpc_timeout
    if log_level is not None:
        init_kwargs["log_level"] = log_level.upper()

    try:
        settings = build_settings(init_kwargs)
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e

    if seed is not None:
        settings.simulation.seed = seed

    if show_config:
        typer.echo(json.dumps(settings.as_safe_dict(), indent=2))
        raise typer.Exit(code=0)

    setup_logging(settings.log_level)
    state = AppState(settings=settings, logger=_build_logger())

    from .runner import run_monitor

    try:
        asyncio.run(run_monitor(state, duration=duration))
    except KeyboardInterrupt:
        state.logger.info("Interrupted")


def run() -> None:
    """Entrypoint used by the console script."""
    app()


if __name__ == "__main__":
    run()
