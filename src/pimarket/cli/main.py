#!/usr/bin/env python3
"""
pimarket CLI - Marketplace Scenario Interface

Provides commands to:
- Run YAML marketplace scenarios against a fresh in-process chain
- Show the effective marketplace configuration
"""

from __future__ import annotations

import json
import logging
import sys

import click
import yaml
from prometheus_client import generate_latest
from rich import box
from rich.console import Console
from rich.table import Table

from pimarket.core.config import MarketConfig
from pimarket.core.exceptions import BlockchainError, get_error_context
from pimarket.core.logging_config import setup_logging
from pimarket.core.scenario import ScenarioReport, ScenarioRunner

logger = logging.getLogger(__name__)
console = Console()


def _handle_cli_error(exc: Exception, exit_code: int = 1) -> None:
    """Centralized CLI error handler for consistent messaging/exit codes."""
    logger.error("CLI error: %s", exc, extra=get_error_context(exc))
    console.print(f"[bold red]Error:[/] {exc}")
    sys.exit(exit_code)


def _report_tables(report: ScenarioReport) -> list[Table]:
    balances = Table(title="Final Balances", box=box.ROUNDED)
    balances.add_column("Account", style="cyan")
    balances.add_column("Address", style="dim")
    balances.add_column("Native", justify="right", style="green")
    balances.add_column("ERC20", justify="right", style="yellow")
    native = report.native_balances()
    tokens = report.token_balances()
    for name, address in report.accounts.items():
        balances.add_row(name, address[:12] + "...", str(native[name]), str(tokens[name]))

    owners = Table(title="piNFT Owners", box=box.ROUNDED)
    owners.add_column("Token", justify="right", style="cyan")
    owners.add_column("Owner", style="green")
    owners.add_column("Embedded ERC20", justify="right", style="yellow")
    nft = report.deployment.pi_nft
    erc20 = report.deployment.sample_erc20.address
    for token_id, owner in report.nft_owners().items():
        owners.add_row(str(token_id), owner, str(nft.view_balance(token_id, erc20)))

    return [balances, owners]


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Override PIMARKET_LOG_LEVEL",
)
@click.option("--json-output", is_flag=True, help="Print machine-readable JSON")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None, json_output: bool):
    """piNFT marketplace tools."""
    try:
        config = MarketConfig.from_env()
    except BlockchainError as exc:
        _handle_cli_error(exc)
    if log_level:
        config.log_level = log_level.upper()
    setup_logging(
        name="pimarket",
        log_file=config.log_file,
        level=config.log_level,
        environment=config.environment,
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["json_output"] = json_output


@cli.command("run-scenario")
@click.argument("scenario_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--metrics", "show_metrics", is_flag=True, help="Print Prometheus metrics after the run")
@click.pass_context
def run_scenario(ctx: click.Context, scenario_file: str, show_metrics: bool):
    """
    Run a YAML scenario on a freshly deployed marketplace.

    Example:
        pimarket run-scenario scenarios/direct_sale.yaml
    """
    try:
        runner = ScenarioRunner.from_file(scenario_file, config=ctx.obj["config"])
        report = runner.run()
    except (BlockchainError, yaml.YAMLError, OSError, KeyError) as exc:
        _handle_cli_error(exc)

    if ctx.obj.get("json_output"):
        payload = {
            "native_balances": report.native_balances(),
            "token_balances": report.token_balances(),
            "nft_owners": report.nft_owners(),
            "steps": [
                {"index": step.index, "op": step.op, "result": step.result, "error": step.error}
                for step in report.steps
            ],
        }
        if show_metrics:
            payload["metrics"] = generate_latest(runner.registry).decode("utf-8")
        click.echo(json.dumps(payload, indent=2, default=str))
        return

    console.print(f"[bold green]Scenario complete:[/] {len(report.steps)} steps")
    for table in _report_tables(report):
        console.print(table)
    if show_metrics:
        click.echo(generate_latest(runner.registry).decode("utf-8"))


@cli.command("show-config")
@click.pass_context
def show_config(ctx: click.Context):
    """Show the effective marketplace configuration."""
    config: MarketConfig = ctx.obj["config"]
    if ctx.obj.get("json_output"):
        click.echo(json.dumps(config.to_dict(), indent=2))
        return

    table = Table(show_header=False, box=box.ROUNDED)
    for key, value in config.to_dict().items():
        table.add_row(f"[bold cyan]{key}", str(value))
    console.print(table)


def main():
    return cli(obj={})


if __name__ == "__main__":
    sys.exit(main() or 0)
