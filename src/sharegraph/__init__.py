"""sharegraph: share authorization and resolution for users, groups, and links.

Share edges with reshare chains, group overrides, expiration, and
cascading deletes, resolved into the set of shares each user sees.
"""

__version__ = "0.1.0"

from sharegraph._service import ShareService
from sharegraph._sharegraph import ShareGraph
from sharegraph.events import EventBus, ShareEvent, ShareEventType
from sharegraph.models.shares import GroupOverride, ShareEdge, ShareEdgeBase, unique_edge_index
from sharegraph.sharing.config import SharingConfig
from sharegraph.sharing.directory import InMemoryDirectory
from sharegraph.sharing.exceptions import (
    AlreadyRegisteredError,
    AlreadySharedError,
    BackendNotRegisteredError,
    BackendRejectedError,
    InvalidRecipientError,
    NotFoundError,
    PermissionExceededError,
    ShareError,
    SharingDisabledError,
    TargetGenerationExhaustedError,
)
from sharegraph.sharing.protocol import (
    DirectoryAdapter,
    ItemBackend,
    SupportsCollection,
    SupportsFileDependent,
)
from sharegraph.sharing.types import (
    CollectionChild,
    Permission,
    ResolvedShare,
    ShareFormat,
    ShareStatus,
    ShareType,
)
from sharegraph.sharing.utils import unique_name

__all__ = [
    "AlreadyRegisteredError",
    "AlreadySharedError",
    "BackendNotRegisteredError",
    "BackendRejectedError",
    "CollectionChild",
    "DirectoryAdapter",
    "EventBus",
    "GroupOverride",
    "InMemoryDirectory",
    "InvalidRecipientError",
    "ItemBackend",
    "NotFoundError",
    "Permission",
    "PermissionExceededError",
    "ResolvedShare",
    "ShareEdge",
    "ShareEdgeBase",
    "ShareError",
    "ShareEvent",
    "ShareEventType",
    "ShareFormat",
    "ShareGraph",
    "ShareService",
    "ShareStatus",
    "ShareType",
    "SharingConfig",
    "SharingDisabledError",
    "SupportsCollection",
    "SupportsFileDependent",
    "TargetGenerationExhaustedError",
    "__version__",
    "unique_edge_index",
    "unique_name",
]
