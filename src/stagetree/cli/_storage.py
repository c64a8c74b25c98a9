"""CLI helpers for repository construction."""

from __future__ import annotations

import os

from stagetree.config import StagetreeConfig
from stagetree.storage import Repository, open_repository


def _config_from_env() -> StagetreeConfig:
    """Build engine config from STAGETREE_* environment variables."""
    config = StagetreeConfig()
    batch = os.getenv("STAGETREE_SCAN_BATCH_SIZE")
    if batch:
        config.scan_batch_size = int(batch)
    releases_root = os.getenv("STAGETREE_RELEASES_ROOT")
    if releases_root:
        config.releases_root = releases_root
    return config


def open_repo() -> Repository:
    """Open the repository selected by the global --db option."""
    from stagetree.cli import state

    if state.db != ":memory:" and not os.path.exists(state.db):
        hint = " (pass --db or set STAGETREE_DB)" if state.db_is_default else ""
        raise FileNotFoundError(f"Database not found: {state.db}{hint}")
    return open_repository(state.db, config=_config_from_env())
