"""stagetree CLI: operator console over the query and replication engines."""

from __future__ import annotations

import logging
from typing import Optional

import typer
from click.core import ParameterSource

from stagetree.cli import query, replication

app = typer.Typer(
    name="stagetree",
    help="stagetree CLI: release-aware queries and replication diagnostics.",
    no_args_is_help=True,
)


class _State:
    """Global CLI state shared across subcommands."""

    db: str = "stagetree.db"
    db_is_default: bool = True
    json_output: bool = False


state = _State()


def _version_callback(value: bool) -> None:
    if value:
        from stagetree import __version__

        print(f"stagetree {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    db: Optional[str] = typer.Option(
        None,
        "--db",
        envvar="STAGETREE_DB",
        help="SQLite database file path (default: stagetree.db)",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output when supported"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    version: bool = typer.Option(
        False, "--version", help="Show version", is_eager=True, callback=_version_callback
    ),
) -> None:
    """Global options for all stagetree commands."""
    db_source = ctx.get_parameter_source("db")

    state.db = db or "stagetree.db"
    # Neither --db nor STAGETREE_DB was given: the path is the fallback name.
    state.db_is_default = db_source not in (
        ParameterSource.COMMANDLINE,
        ParameterSource.ENVIRONMENT,
    )
    state.json_output = json_output
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    if ctx.invoked_subcommand is None and not version:
        print(ctx.get_help())
        raise typer.Exit()


app.command(name="query")(query.query_cmd)
app.command(name="versionables")(replication.versionables_cmd)
app.command(name="children-order")(replication.children_order_cmd)
app.command(name="fingerprint")(replication.fingerprint_cmd)
app.command(name="reconcile")(replication.reconcile_cmd)


def main() -> None:
    """Entry point for the stagetree CLI."""
    app()
