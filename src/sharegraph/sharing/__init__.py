"""Sharing engine: share store, resolver, target generation, and lifecycle hooks."""

from sharegraph.sharing.backends import BackendRegistration, BackendRegistry
from sharegraph.sharing.cascade import CascadeService
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
from sharegraph.sharing.hooks import LifecycleHooks
from sharegraph.sharing.protocol import (
    DirectoryAdapter,
    ItemBackend,
    SupportsCollection,
    SupportsFileDependent,
)
from sharegraph.sharing.resolver import ShareResolver
from sharegraph.sharing.store import ShareStore
from sharegraph.sharing.targets import TargetGenerator
from sharegraph.sharing.types import (
    CollectionChild,
    Permission,
    ResolvedShare,
    ShareFormat,
    ShareStatus,
    ShareType,
)

__all__ = [
    "AlreadyRegisteredError",
    "AlreadySharedError",
    "BackendNotRegisteredError",
    "BackendRegistration",
    "BackendRegistry",
    "BackendRejectedError",
    "CascadeService",
    "CollectionChild",
    "DirectoryAdapter",
    "InMemoryDirectory",
    "InvalidRecipientError",
    "ItemBackend",
    "LifecycleHooks",
    "NotFoundError",
    "Permission",
    "PermissionExceededError",
    "ResolvedShare",
    "ShareError",
    "ShareFormat",
    "ShareResolver",
    "ShareStatus",
    "ShareStore",
    "ShareType",
    "SharingConfig",
    "SharingDisabledError",
    "SupportsCollection",
    "SupportsFileDependent",
    "TargetGenerationExhaustedError",
]
