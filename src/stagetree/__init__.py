"""stagetree: release-aware queries and replication fingerprints over a versioned node tree."""

__version__ = "0.1.0"

from stagetree.config import StagetreeConfig
from stagetree.errors import (
    BackendAccessError,
    ReconciliationError,
    ReleaseNotFoundError,
    StagetreeError,
    StatementSyntaxError,
    TypeResolutionError,
    UsageError,
)
from stagetree.filters import (
    Selector,
    contains,
    is_child_of,
    is_descendant_of,
    is_same_node_as,
    local_name,
    node_name,
    prop,
)
from stagetree.fingerprint import AttributeFingerprinter, ProtectedPropertyCache, attribute_fingerprint
from stagetree.query import JoinOn, JoinType, Query, QueryBuilder, QueryScope
from stagetree.releases import ALL_PERMISSIVE, PrefixReleaseMapper, Release, ReleaseManager
from stagetree.replication import ChildrenOrderInfo, NodeAttributeComparisonInfo, VersionableInfo
from stagetree.rows import ResultRow
from stagetree.storage import ContentAccessor, Repository, open_repository
from stagetree.types import Node
from stagetree.versionables import VersionableTree, iter_children_orders, iter_versionables

__all__ = [
    "__version__",
    "StagetreeConfig",
    "StagetreeError",
    "BackendAccessError",
    "UsageError",
    "StatementSyntaxError",
    "TypeResolutionError",
    "ReleaseNotFoundError",
    "ReconciliationError",
    "Selector",
    "prop",
    "node_name",
    "local_name",
    "contains",
    "is_child_of",
    "is_descendant_of",
    "is_same_node_as",
    "Query",
    "QueryBuilder",
    "QueryScope",
    "JoinType",
    "JoinOn",
    "ResultRow",
    "Release",
    "ReleaseManager",
    "PrefixReleaseMapper",
    "ALL_PERMISSIVE",
    "ContentAccessor",
    "Repository",
    "open_repository",
    "Node",
    "AttributeFingerprinter",
    "ProtectedPropertyCache",
    "attribute_fingerprint",
    "VersionableInfo",
    "ChildrenOrderInfo",
    "NodeAttributeComparisonInfo",
    "VersionableTree",
    "iter_versionables",
    "iter_children_orders",
]
