"""ShareEdge model — one row per grant of an item to a recipient.

Provides ``ShareEdgeBase`` (non-table) and ``ShareEdge`` (concrete table).
Subclass ``ShareEdgeBase`` with ``table=True`` and a custom ``__tablename__``
to use a different table name per deployment.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import DateTime, Index, text
from sqlmodel import Field, SQLModel

from sharegraph.sharing.types import ShareType, is_file_type

SUPPRESSED = 0
"""Permissions of an override row that hides the group share from its member."""

_UNIQUE_EDGE_WHERE = f"share_type IN ({int(ShareType.USER)}, {int(ShareType.GROUP)})"


def unique_edge_index(table_name: str) -> Index:
    """One user or group share per item, recipient, and owner.

    Override and link rows are left out.  Custom share tables should put
    this in their ``__table_args__`` so concurrent duplicate shares fail
    on insert.
    """
    return Index(
        f"uq_{table_name}_edge",
        "item_type",
        "item_source",
        "share_type",
        "share_with",
        "uid_owner",
        unique=True,
        sqlite_where=text(_UNIQUE_EDGE_WHERE),
        postgresql_where=text(_UNIQUE_EDGE_WHERE),
    )


@dataclass(frozen=True, slots=True)
class GroupOverride:
    """Per-member exception to a group share.

    Attributes:
        group_edge_id: Id of the group row being overridden.
        suppressed: True when the member unshared the item from themself.
        item_target: Member-specific item target (renamed overrides).
        file_target: Member-specific file target (renamed overrides).
    """

    group_edge_id: int
    suppressed: bool
    item_target: str | None = None
    file_target: str | None = None


class ShareEdgeBase(SQLModel):
    """Base fields for a share edge. Subclass with ``table=True`` for a concrete table."""

    id: int | None = Field(default=None, primary_key=True)
    item_type: str = Field(index=True)
    item_source: str = Field(index=True)
    item_target: str | None = Field(default=None)
    parent: int | None = Field(default=None, index=True)
    share_type: int = Field(index=True)
    share_with: str | None = Field(default=None, index=True)
    uid_owner: str = Field(index=True)
    permissions: int = Field(default=0)
    stime: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    file_source: int | None = Field(default=None)
    file_target: str | None = Field(default=None)
    expiration: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    token: str | None = Field(default=None, index=True)

    @property
    def override(self) -> GroupOverride | None:
        """The override this row encodes, or None for ordinary edges."""
        if self.share_type != ShareType.GROUP_USER_OVERRIDE or self.parent is None:
            return None
        suppressed = self.permissions == SUPPRESSED
        return GroupOverride(
            group_edge_id=self.parent,
            suppressed=suppressed,
            item_target=None if suppressed else self.item_target,
            file_target=None if suppressed else self.file_target,
        )

    def suppress(self) -> None:
        """Turn this override row into one that hides the group share."""
        if self.share_type != ShareType.GROUP_USER_OVERRIDE:
            raise ValueError(f"Share {self.id} is not a group override row")
        self.permissions = SUPPRESSED

    def is_expired(self, now: datetime | None = None) -> bool:
        """True when ``expiration`` lies in the past."""
        if self.expiration is None:
            return False
        exp = self.expiration
        # SQLite hands back naive datetimes
        if exp.tzinfo is None:
            exp = exp.replace(tzinfo=UTC)
        return exp <= (now or datetime.now(UTC))

    def validate_shape(self, file_dependent: bool | None = None) -> None:
        """Check the file-dependent column invariants before insert.

        *file_dependent* comes from the backend registry; when omitted
        only files and folders count as file-dependent.
        """
        if file_dependent is None:
            file_dependent = is_file_type(self.item_type)
        if file_dependent:
            if self.file_source is None or self.file_target is None:
                raise ValueError(
                    f"Share of {self.item_type} {self.item_source!r} requires "
                    "file_source and file_target"
                )
        elif self.file_source is not None or self.file_target is not None:
            raise ValueError(
                f"Share of {self.item_type} {self.item_source!r} must not carry "
                "file_source or file_target"
            )
        if self.share_type == ShareType.GROUP_USER_OVERRIDE and self.parent is None:
            raise ValueError("Group override rows require the group row as parent")
        if self.share_type == ShareType.LINK and self.token is None:
            raise ValueError("Link shares require a token")

    def payload(self) -> dict[str, Any]:
        """Event payload with the full edge."""
        return self.model_dump()


class ShareEdge(ShareEdgeBase, table=True):
    """Default share table — ``sharegraph_shares``."""

    __tablename__ = "sharegraph_shares"
    __table_args__ = (unique_edge_index("sharegraph_shares"),)
