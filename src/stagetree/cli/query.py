"""stagetree query: run a (release-aware) query against the repository."""

from __future__ import annotations

from typing import Optional

import typer

from stagetree.cli import _exitcodes as ec
from stagetree.cli._filters import group_filter_args, parse_cli_filters
from stagetree.cli._output import print_error, print_notice, print_table
from stagetree.cli._storage import open_repo
from stagetree.errors import ReleaseNotFoundError, StagetreeError
from stagetree.query import Query
from stagetree.releases import ALL_PERMISSIVE, PrefixReleaseMapper, Release, ReleaseManager
from stagetree.storage import Repository


def _resolve_release(
    repo: Repository, root: Optional[str], number: Optional[str], mark: Optional[str]
) -> Release | None:
    if number is None and mark is None:
        return None
    if root is None:
        raise typer.BadParameter("--release-root is required with --release or --mark")
    manager = ReleaseManager(repo)
    if number is not None:
        return manager.find_release(root, number)
    try:
        return manager.find_release_by_mark(root, mark)  # type: ignore[arg-type]
    except ReleaseNotFoundError:
        print_notice(f"no release of {root} is marked '{mark}'; querying live content")
        return None


def query_cmd(
    path: str = typer.Argument(..., help="Query root path"),
    type_name: Optional[str] = typer.Option(None, "--type", help="Node type constraint"),
    element: Optional[str] = typer.Option(None, "--element", help="Node name constraint"),
    filter_args: Optional[list[str]] = typer.Option(
        None, "--filter", help="'PROPERTY OP VALUE_JSON' (repeatable)"
    ),
    order_by: Optional[str] = typer.Option(None, "--order-by", help="Property or node:path"),
    descending: bool = typer.Option(False, "--desc", help="Descending order"),
    limit: Optional[int] = typer.Option(None, "--limit", help="Max results"),
    offset: Optional[int] = typer.Option(None, "--offset", help="Skip first N results"),
    release_root: Optional[str] = typer.Option(None, "--release-root", help="Release root path"),
    number: Optional[str] = typer.Option(None, "--release", help="Release number"),
    mark: Optional[str] = typer.Option(None, "--mark", help="Release mark, e.g. public"),
    exclude: Optional[list[str]] = typer.Option(
        None, "--exclude", help="Path never served from the release (repeatable)"
    ),
    select: Optional[list[str]] = typer.Option(None, "--select", help="Column (repeatable)"),
) -> None:
    """Query nodes below PATH, optionally as seen through a release."""
    from stagetree.cli import state

    try:
        condition = parse_cli_filters(group_filter_args(filter_args))
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)

    try:
        repo = open_repo()
    except (OSError, StagetreeError) as e:
        print_error(f"Cannot open repository: {e}")
        raise typer.Exit(ec.DATABASE_ERROR)

    try:
        release = _resolve_release(repo, release_root, number, mark)
        mapper = PrefixReleaseMapper(exclude) if exclude else ALL_PERMISSIVE
        q = Query(repo, release=release, release_mapper=mapper).path(path)
        if type_name:
            q.type(type_name)
        if element:
            q.element(element)
        if condition is not None:
            q.condition(condition)
        if order_by:
            q.order_by(order_by)
            if descending:
                q.descending()
        if limit is not None:
            q.limit(limit)
        if offset is not None:
            q.offset(offset)

        if select:
            rows = q.select_and_execute(*select)
            headers = ["path", *select]
            print_table(
                headers,
                [[r.path, *(r.get(c) for c in select)] for r in rows],
                json_mode=state.json_output,
            )
        else:
            nodes = q.execute()
            print_table(
                ["path", "type", "version"],
                [[n.path, n.primary_type, n.version_id or ""] for n in nodes],
                json_mode=state.json_output,
            )
    except StagetreeError as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    finally:
        repo.close()
