"""Configuration for stagetree engines."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class StagetreeConfig:
    """Tunables shared by the query and replication engines."""

    scan_batch_size: int = 500
    max_token_length: int = 64
    hash_digest_size: int = 16
    binary_chunk_size: int = 8192
    releases_root: str = "/var/releases"
    release_label_prefix: str = "release-"
