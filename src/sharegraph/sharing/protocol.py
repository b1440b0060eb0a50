"""Collaborator protocols — runtime-checkable interfaces.

Split into a core ``ItemBackend`` protocol and opt-in capability
protocols so that simple item types implement only the core, while
file-dependent and collection types add what they need.

``DirectoryAdapter`` is the view of the user/group directory (LDAP,
database, ...) the sharing core needs.  All collaborator calls are
synchronous; callers impose their own deadlines.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .types import CollectionChild, ResolvedShare


@runtime_checkable
class DirectoryAdapter(Protocol):
    """User and group lookups."""

    def user_exists(self, uid: str) -> bool: ...

    def group_exists(self, gid: str) -> bool: ...

    def users_in_group(self, gid: str) -> set[str]: ...

    def groups_of_user(self, uid: str) -> set[str]: ...

    def display_name(self, uid: str) -> str: ...


@runtime_checkable
class ItemBackend(Protocol):
    """Core interface every item backend must implement."""

    def is_valid_source(self, item_source: str, uid_owner: str) -> bool:
        """Return True if *item_source* exists and belongs to *uid_owner*."""
        ...

    def generate_target(
        self,
        item_source: str,
        share_with: str | None,
        exclude: list[str] | None = None,
    ) -> str:
        """Propose a recipient-visible name for *item_source*.

        *share_with* is None for group and link shares.  The returned
        name must not be in *exclude*; by convention a conflicting
        ``name.ext`` becomes ``name (2).ext``.
        """
        ...

    def format_items(
        self,
        items: list[ResolvedShare],
        fmt: int,
        parameters: Any = None,
    ) -> Any:
        """Convert resolved shares into a backend-specific output format."""
        ...


@runtime_checkable
class SupportsFileDependent(Protocol):
    """Opt-in: items backed by an entry in the file index."""

    def get_file_path(self, item_source: str, uid_owner: str) -> str | None: ...

    def get_file_source(self, item_source: str, uid_owner: str) -> int | None:
        """Return the file index id of the item, or None if not indexed."""
        ...


@runtime_checkable
class SupportsCollection(Protocol):
    """Opt-in: items that contain other shareable items."""

    def get_children(self, item_source: str) -> list[CollectionChild]: ...
