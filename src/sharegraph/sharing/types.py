"""Share enums and result types: ShareType, Permission, ResolvedShare, etc."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import IntEnum, IntFlag
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from datetime import datetime

    from sharegraph.models.shares import ShareEdgeBase


FILE_ITEM_TYPES = frozenset({"file", "folder"})
"""Item types addressed by ``file_source``/``file_target`` rather than item columns."""

TOKEN_LENGTH = 32


class ShareType(IntEnum):
    """Recipient kind of a share edge."""

    USER = 0
    GROUP = 1
    GROUP_USER_OVERRIDE = 2
    LINK = 3

    # Query-only: the user plus every group the user belongs to
    USER_AND_GROUPS = -1


class Permission(IntFlag):
    """CRUDS permission bitmask."""

    NONE = 0
    READ = 1
    UPDATE = 2
    CREATE = 4
    DELETE = 8
    SHARE = 16
    ALL = READ | UPDATE | CREATE | DELETE | SHARE


class ShareFormat(IntEnum):
    """Built-in output formats.  Any other value is handed to the backend."""

    NONE = -1
    STATUSES = -2
    SOURCES = -3


def is_file_type(item_type: str) -> bool:
    return item_type in FILE_ITEM_TYPES


@dataclass
class CollectionChild:
    """A child item reported by a collection backend."""

    source: str
    target: str
    file_path: str | None = None
    file_source: int | None = None


@dataclass
class ResolvedShare:
    """A share as seen by a caller after resolution.

    For a group share with a per-member override, ``id`` is the group
    row and ``override_id`` the member's override row; the targets are
    the override's.
    """

    id: int
    item_type: str
    item_source: str
    share_type: int
    uid_owner: str
    permissions: int
    item_target: str | None = None
    parent: int | None = None
    share_with: str | None = None
    stime: datetime | None = None
    file_source: int | None = None
    file_target: str | None = None
    expiration: datetime | None = None
    token: str | None = None
    share_with_displayname: str | None = None
    displayname_owner: str | None = None
    override_id: int | None = None
    collection: dict[str, Any] | None = None

    @classmethod
    def from_edge(cls, edge: ShareEdgeBase) -> ResolvedShare:
        assert edge.id is not None
        return cls(
            id=edge.id,
            item_type=edge.item_type,
            item_source=edge.item_source,
            share_type=edge.share_type,
            uid_owner=edge.uid_owner,
            permissions=edge.permissions,
            item_target=edge.item_target,
            parent=edge.parent,
            share_with=edge.share_with,
            stime=edge.stime,
            file_source=edge.file_source,
            file_target=edge.file_target,
            expiration=edge.expiration,
            token=edge.token,
        )

    def get(self, column: str) -> Any:
        """Return the value of a share column by name."""
        return getattr(self, column)

    def has(self, permission: Permission) -> bool:
        return bool(self.permissions & permission)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ShareStatus:
    """Per-item sharing status (``ShareFormat.STATUSES``)."""

    link: bool = False
    path: str | None = None
    share_ids: list[int] = field(default_factory=list)
