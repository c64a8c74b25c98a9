"""Replication commands: versionable markers, children order, fingerprints, reconciliation."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError

from stagetree.cli import _exitcodes as ec
from stagetree.cli._output import print_error, print_json, print_table
from stagetree.cli._storage import open_repo
from stagetree.errors import StagetreeError
from stagetree.fingerprint import AttributeFingerprinter
from stagetree.replication import (
    dump_children_orders,
    dump_fingerprints,
    dump_versionables,
    load_versionables,
)
from stagetree.versionables import VersionableTree, iter_children_orders, iter_versionables


def _open():
    try:
        return open_repo()
    except (OSError, StagetreeError) as e:
        print_error(f"Cannot open repository: {e}")
        raise typer.Exit(ec.DATABASE_ERROR)


def versionables_cmd(
    roots: list[str] = typer.Argument(..., help="Root paths to scan"),
) -> None:
    """Print the versionable markers below ROOTS as JSON."""
    repo = _open()
    try:
        print_json(dump_versionables(iter_versionables(repo, roots)))
    except StagetreeError as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    finally:
        repo.close()


def children_order_cmd(
    roots: list[str] = typer.Argument(..., help="Root paths to scan"),
) -> None:
    """Print children order records below ROOTS as JSON."""
    repo = _open()
    try:
        print_json(dump_children_orders(iter_children_orders(repo, roots)))
    except StagetreeError as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    finally:
        repo.close()


def fingerprint_cmd(
    node_paths: list[str] = typer.Argument(..., help="Node paths"),
) -> None:
    """Print attribute fingerprints of the given nodes as JSON."""
    repo = _open()
    fingerprinter = AttributeFingerprinter(repo.config)
    try:
        infos = []
        for path in node_paths:
            node = repo.get_node(path)
            if node is None:
                print_error(f"No node at '{path}'")
                raise typer.Exit(ec.USAGE_ERROR)
            infos.append(fingerprinter.fingerprint(node, repo))
        print_json(dump_fingerprints(infos))
    except StagetreeError as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    finally:
        repo.close()


def reconcile_cmd(
    markers_file: Path = typer.Argument(..., help="JSON file with a peer's versionable markers"),
    subpath: Optional[str] = typer.Option(
        None, "--subpath", help="Reject markers outside this path"
    ),
) -> None:
    """Compare a peer's versionable markers with the repository."""
    from stagetree.cli import state

    try:
        previous = load_versionables(markers_file.read_bytes())
    except (OSError, ValidationError) as e:
        print_error(f"Cannot read markers: {e}")
        raise typer.Exit(ec.USAGE_ERROR)

    repo = _open()
    try:
        tree = VersionableTree(repo, check_subpath=subpath).process(previous)
        rows = [["deleted", p] for p in tree.deleted_paths]
        rows += [["changed", p] for p in tree.changed_paths]
        print_table(["status", "path"], rows, json_mode=state.json_output)
    except StagetreeError as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    finally:
        repo.close()
