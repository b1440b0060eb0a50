"""ShareResolver — turns share filters into the effective set of visible shares.

The resolver reads raw edges and applies, in order: lazy expiry,
group override merging, per-target deduplication, collection
expansion, the global resharing switch, and the row limit.
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from .protocol import SupportsCollection, SupportsFileDependent
from .types import (
    FILE_ITEM_TYPES,
    Permission,
    ResolvedShare,
    ShareFormat,
    ShareStatus,
    ShareType,
    is_file_type,
)
from .utils import normalize_path, user_and_groups

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from sharegraph.models.shares import ShareEdgeBase

    from .backends import BackendRegistry
    from .cascade import CascadeService
    from .config import SharingConfig
    from .protocol import DirectoryAdapter

logger = logging.getLogger(__name__)

MIN_SCAN_ROWS = 3
"""Smallest page fetched for a limited owner query; one extra row exposes ambiguity."""

_RECEIVED_TYPES = (ShareType.USER, ShareType.GROUP, ShareType.GROUP_USER_OVERRIDE)


class ShareResolver:
    """Query engine over share edges.

    Stateless apart from its collaborators; receives a session at
    call time.
    """

    def __init__(
        self,
        share_model: type[ShareEdgeBase],
        registry: BackendRegistry,
        directory: DirectoryAdapter,
        config: SharingConfig,
        cascade: CascadeService,
        resharing_allowed: Callable[[], bool],
    ) -> None:
        self._share_model = share_model
        self._registry = registry
        self._directory = directory
        self._config = config
        self._cascade = cascade
        self._resharing_allowed = resharing_allowed

    # ------------------------------------------------------------------
    # Core query
    # ------------------------------------------------------------------

    async def query(
        self,
        session: AsyncSession,
        item_type: str,
        item: str | int | None = None,
        *,
        share_type: int | None = None,
        share_with: str | None = None,
        owner: str | None = None,
        fmt: int = ShareFormat.NONE,
        parameters: Any = None,
        limit: int = -1,
        include_collections: bool = False,
        by_source: bool = False,
    ) -> Any:
        """Return the shares matching the filters.

        *item* is matched against the source column when *owner* is
        given or *by_source* is set, else against the target column.
        ``share_type=ShareType.USER_AND_GROUPS`` with *share_with* set
        to a user matches shares to the user and to any of the user's
        groups, excluding the user's own shares.

        With ``limit=1`` a single ``ResolvedShare`` (or None) is
        returned; otherwise a list, a status map, or whatever the
        backend's ``format_items`` produces for *fmt*.
        """
        if not self._config.enabled:
            return None if limit == 1 else []

        registration = self._registry.get_registration(item_type)
        backend = registration.backend
        file_type = is_file_type(item_type)
        collection_types = self._registry.collection_types(item_type) if include_collections else []
        model = self._share_model

        conditions: list[Any] = []
        if file_type:
            conditions.append(model.item_type.in_(FILE_ITEM_TYPES))  # type: ignore[attr-defined]
            if item is None:
                conditions.append(model.file_target.is_not(None))  # type: ignore[union-attr]
        elif item is None and collection_types:
            types = collection_types if item_type in collection_types else [item_type, *collection_types]
            conditions.append(model.item_type.in_(types))  # type: ignore[attr-defined]
        elif item is not None and collection_types:
            conditions.append(
                model.item_type.in_([item_type, *collection_types])  # type: ignore[attr-defined]
            )
        else:
            conditions.append(model.item_type == item_type)

        viewer: str | None = None
        if share_type is not None:
            if share_type == ShareType.USER_AND_GROUPS and share_with is not None:
                viewer = share_with
                conditions.append(model.share_type.in_(_RECEIVED_TYPES))  # type: ignore[attr-defined]
                conditions.append(
                    model.share_with.in_(user_and_groups(self._directory, viewer))  # type: ignore[union-attr]
                )
                # Don't include own shares
                conditions.append(model.uid_owner != viewer)
            else:
                conditions.append(model.share_type == share_type)
                if share_with is not None:
                    conditions.append(model.share_with == share_with)

        use_source = owner is not None or by_source
        if owner is not None:
            conditions.append(model.uid_owner == owner)
            if share_type is None:
                # Per-member override rows are not shares of their own
                conditions.append(model.share_type != ShareType.GROUP_USER_OVERRIDE)

        column = _column(file_type, source=use_source)
        value: str | int | None = None
        if item is not None:
            value = _coerce(item, column)
            match = getattr(model, column) == value
            if collection_types:
                conditions.append(
                    or_(match, model.item_type.in_(collection_types))  # type: ignore[attr-defined]
                )
            else:
                conditions.append(match)

        stmt = select(model).where(*conditions).order_by(model.id)
        # Override folding and dedupe can hide or merge any fetched row, so
        # only an owner's own view is windowed in SQL
        page: int | None = None
        if limit != -1 and not include_collections and owner is not None and viewer is None:
            page = max(limit, MIN_SCAN_ROWS)

        edges: list[ShareEdgeBase] = []
        last_id: int | None = None
        while True:
            batch = stmt
            if page is not None:
                if last_id is not None:
                    batch = batch.where(model.id > last_id)  # type: ignore[operator]
                batch = batch.limit(page)
            result = await session.execute(batch)
            fetched = list(result.scalars().all())
            edges = await self._drop_expired(session, [*edges, *fetched])
            if page is None or len(fetched) < page or len(edges) >= max(limit, 2):
                break
            last_id = fetched[-1].id

        if viewer is not None:
            edges, overrides = await self._attach_overrides(session, edges, viewer)
        else:
            overrides = {}

        items = self._merge(edges, overrides, column, dedupe=owner is None)

        for row in items:
            self._annotate(row)

        # Overrides may have renamed a row away from the requested target
        if value is not None and not use_source:
            items = [
                row for row in items
                if row.get(column) == value or row.item_type in collection_types
            ]

        single: ResolvedShare | None = None
        rows: list[ResolvedShare] = []
        collection_rows: list[ResolvedShare] = []
        for row in items:
            if (
                limit == 1
                and value is not None
                and row.get(column) == value
                and (row.item_type == item_type or item_type == "file")
            ):
                single = row
                break
            if collection_types and row.item_type in collection_types:
                found = self._expand_collection(
                    row, item_type, column, value, collection_rows,
                    file_dependent=registration.is_file_dependent or file_type,
                    stop_at_first=limit == 1,
                )
                if found is not None:
                    single = found
                    break
                continue
            rows.append(row)
        rows.extend(collection_rows)

        if limit == 1:
            if single is None:
                if len(rows) > 1:
                    logger.error(
                        "Single-share lookup for %s %r resolved to %d shares; using the first",
                        item_type,
                        item,
                        len(rows),
                    )
                single = rows[0] if rows else None
            if single is None or fmt == ShareFormat.NONE:
                return single
            rows = [single]
        elif limit > 0:
            rows = rows[:limit]

        if fmt == ShareFormat.NONE:
            return rows
        if fmt == ShareFormat.STATUSES:
            return self._statuses(rows, column)
        return backend.format_items(rows, fmt, parameters)

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------

    async def _drop_expired(
        self, session: AsyncSession, edges: list[ShareEdgeBase]
    ) -> list[ShareEdgeBase]:
        """Skip expired edges and delete them, best-effort."""
        now = datetime.now(UTC)
        deleted: set[int] = set()
        live: list[ShareEdgeBase] = []
        for edge in edges:
            if edge.id in deleted:
                continue
            if edge.is_expired(now):
                assert edge.id is not None
                deleted.update(await self._expire(session, edge.id))
                continue
            live.append(edge)
        return [edge for edge in live if edge.id not in deleted]

    async def _expire(self, session: AsyncSession, edge_id: int) -> list[int]:
        try:
            ids = await self._cascade.delete(session, edge_id)
        except SQLAlchemyError:
            logger.warning("Failed to delete expired share %s", edge_id, exc_info=True)
            return [edge_id]
        logger.debug("Deleted expired share %s", edge_id)
        return ids

    async def _attach_overrides(
        self,
        session: AsyncSession,
        edges: list[ShareEdgeBase],
        viewer: str,
    ) -> tuple[list[ShareEdgeBase], dict[int, ShareEdgeBase]]:
        """Pair every group row with the viewer's override row, in either direction.

        Returns the edges without override rows (group rows of orphaned
        overrides added) and a map of group row id to override row.
        """
        model = self._share_model
        overrides = {
            edge.parent: edge
            for edge in edges
            if edge.share_type == ShareType.GROUP_USER_OVERRIDE and edge.parent is not None
        }
        rows = [edge for edge in edges if edge.share_type != ShareType.GROUP_USER_OVERRIDE]
        row_ids = {edge.id for edge in rows}

        missing = [
            edge.id for edge in rows
            if edge.share_type == ShareType.GROUP and edge.id not in overrides
        ]
        if missing:
            result = await session.execute(
                select(model).where(
                    model.parent.in_(missing),  # type: ignore[union-attr]
                    model.share_type == ShareType.GROUP_USER_OVERRIDE,
                    model.share_with == viewer,
                )
            )
            for edge in result.scalars().all():
                overrides[edge.parent] = edge  # type: ignore[index]

        orphaned = [gid for gid in overrides if gid not in row_ids]
        if orphaned:
            result = await session.execute(
                select(model).where(
                    model.id.in_(orphaned),  # type: ignore[union-attr]
                    model.share_type == ShareType.GROUP,
                )
            )
            parents = await self._drop_expired(session, list(result.scalars().all()))
            rows = sorted([*rows, *parents], key=lambda e: e.id or 0)

        return rows, overrides

    def _merge(
        self,
        edges: list[ShareEdgeBase],
        overrides: dict[int, ShareEdgeBase],
        column: str,
        *,
        dedupe: bool,
    ) -> list[ResolvedShare]:
        """Fold override rows into their group rows and collapse duplicate targets."""
        items: dict[int, ResolvedShare] = {}
        targets: dict[Any, int] = {}
        for edge in edges:
            assert edge.id is not None
            view = edge.override
            if view is not None and view.group_edge_id in items:
                group = items.pop(view.group_edge_id)
                if view.suppressed:
                    continue
                row = replace(
                    group,
                    item_target=edge.item_target,
                    file_target=edge.file_target,
                    override_id=edge.id,
                )
                targets = {k: v for k, v in targets.items() if v != group.id}
            elif edge.share_type == ShareType.GROUP and edge.id in overrides:
                member = overrides[edge.id]
                member_view = member.override
                if member_view is not None and member_view.suppressed:
                    continue
                row = ResolvedShare.from_edge(edge)
                row.item_target = member.item_target
                row.file_target = member.file_target
                row.override_id = member.id
            else:
                row = ResolvedShare.from_edge(edge)

            if dedupe:
                key = row.get(column)
                if key in targets:
                    kept_id = targets[key]
                    kept = items[kept_id]
                    # The same owner shared with the viewer twice, e.g. via a group and a user share
                    if kept.uid_owner == row.uid_owner:
                        items = self._absorb(items, kept_id, row)
                        targets[key] = kept.id
                        continue
                else:
                    targets[key] = row.id
            items[row.id] = row
        return list(items.values())

    @staticmethod
    def _absorb(
        items: dict[int, ResolvedShare], kept_id: int, row: ResolvedShare
    ) -> dict[int, ResolvedShare]:
        """Merge *row* into ``items[kept_id]``.

        The survivor is reported as a group share so resharing checks
        are not bypassed.  If only *row* grants SHARE, its id becomes
        canonical so reshares hang off the right parent.
        """
        kept = items[kept_id]
        if kept.share_type != ShareType.GROUP:
            kept.share_type = ShareType.GROUP
            kept.share_with = row.share_with
        if not kept.permissions & Permission.SHARE and row.permissions & Permission.SHARE:
            kept.id = row.id
            kept.parent = row.parent
            kept.override_id = row.override_id
            items = {(kept.id if k == kept_id else k): v for k, v in items.items()}
        kept.permissions |= row.permissions
        return items

    def _annotate(self, row: ResolvedShare) -> None:
        if not self._resharing_allowed():
            row.permissions &= ~Permission.SHARE
        if row.share_with and row.share_type == ShareType.USER:
            row.share_with_displayname = self._directory.display_name(row.share_with)
        elif row.share_with and row.share_type == ShareType.GROUP:
            row.share_with_displayname = row.share_with
        if row.uid_owner:
            row.displayname_owner = self._directory.display_name(row.uid_owner)

    def _expand_collection(
        self,
        row: ResolvedShare,
        item_type: str,
        column: str,
        value: str | int | None,
        out: list[ResolvedShare],
        *,
        file_dependent: bool,
        stop_at_first: bool,
    ) -> ResolvedShare | None:
        """Synthesize child shares of a collection share into *out*.

        Returns the matching child when *stop_at_first* and *value*
        identify a single item.
        """
        backend = self._registry.get(row.item_type)
        if not isinstance(backend, SupportsCollection):
            return None
        # Collections can be inside collections
        if value is not None and row.item_type == item_type and row.get(column) == value:
            out.append(row)
            return None

        collection: dict[str, Any] = {"item_type": row.item_type}
        if is_file_type(row.item_type) and row.file_target:
            collection["path"] = posixpath.basename(row.file_target)
        row.collection = collection

        for child in backend.get_children(row.item_source):
            child_row = replace(row, item_type=item_type, collection=dict(collection))
            child_row.item_source = child.source
            if not is_file_type(row.item_type):
                child_row.item_target = child.target
            if file_dependent:
                if is_file_type(row.item_type):
                    child_row.file_source = int(child.source)
                    base = row.file_target or "/"
                    child_row.file_target = normalize_path(
                        posixpath.join(base, child.file_path or child.target)
                    )
                    child_row.item_target = child_row.file_target
                else:
                    child_row.file_source = child.file_source
                    child_row.file_target = (
                        normalize_path(child.file_path) if child.file_path else None
                    )
            if value is None:
                out.append(child_row)
            elif child_row.get(column) == value:
                if stop_at_first:
                    return child_row
                out.append(child_row)
        return None

    def _statuses(self, rows: list[ResolvedShare], column: str) -> dict[Any, ShareStatus]:
        statuses: dict[Any, ShareStatus] = {}
        for row in rows:
            status = statuses.setdefault(row.get(column), ShareStatus())
            if row.share_type == ShareType.LINK:
                status.link = True
            status.share_ids.append(row.id)
            if status.path is None and self._registry.has_backend(row.item_type):
                backend = self._registry.get(row.item_type)
                if isinstance(backend, SupportsFileDependent):
                    status.path = backend.get_file_path(row.item_source, row.uid_owner)
        return statuses

    # ------------------------------------------------------------------
    # Convenience reads
    # ------------------------------------------------------------------

    async def items_shared_with(
        self,
        session: AsyncSession,
        item_type: str,
        viewer: str,
        *,
        fmt: int = ShareFormat.NONE,
        parameters: Any = None,
        limit: int = -1,
        include_collections: bool = False,
    ) -> Any:
        """Items of *item_type* shared with *viewer* directly or via groups."""
        return await self.query(
            session, item_type,
            share_type=ShareType.USER_AND_GROUPS, share_with=viewer,
            fmt=fmt, parameters=parameters, limit=limit,
            include_collections=include_collections,
        )

    async def item_shared_with(
        self,
        session: AsyncSession,
        item_type: str,
        item_target: str,
        viewer: str,
        *,
        fmt: int = ShareFormat.NONE,
        parameters: Any = None,
        include_collections: bool = False,
    ) -> Any:
        """The item *viewer* sees under *item_target*."""
        return await self.query(
            session, item_type, item_target,
            share_type=ShareType.USER_AND_GROUPS, share_with=viewer,
            fmt=fmt, parameters=parameters, limit=1,
            include_collections=include_collections,
        )

    async def item_shared_with_by_source(
        self,
        session: AsyncSession,
        item_type: str,
        item_source: str,
        viewer: str,
        *,
        fmt: int = ShareFormat.NONE,
        parameters: Any = None,
        include_collections: bool = False,
    ) -> Any:
        """The share through which *viewer* received *item_source*."""
        return await self.query(
            session, item_type, item_source,
            share_type=ShareType.USER_AND_GROUPS, share_with=viewer,
            fmt=fmt, parameters=parameters, limit=1,
            include_collections=include_collections, by_source=True,
        )

    async def item_shared_with_by_link(
        self, session: AsyncSession, item_type: str, item_source: str, owner: str
    ) -> ResolvedShare | None:
        """The link share of *owner* for *item_source*."""
        return await self.query(
            session, item_type, item_source,
            share_type=ShareType.LINK, owner=owner, limit=1,
        )

    async def items_shared(
        self,
        session: AsyncSession,
        item_type: str,
        owner: str,
        *,
        fmt: int = ShareFormat.NONE,
        parameters: Any = None,
        limit: int = -1,
        include_collections: bool = False,
    ) -> Any:
        """Shares of *item_type* created by *owner*."""
        return await self.query(
            session, item_type, owner=owner,
            fmt=fmt, parameters=parameters, limit=limit,
            include_collections=include_collections,
        )

    async def item_shared(
        self,
        session: AsyncSession,
        item_type: str,
        item_source: str,
        owner: str,
        *,
        fmt: int = ShareFormat.NONE,
        parameters: Any = None,
        include_collections: bool = False,
    ) -> Any:
        """Every share *owner* created for *item_source*."""
        return await self.query(
            session, item_type, item_source, owner=owner,
            fmt=fmt, parameters=parameters,
            include_collections=include_collections,
        )

    async def users_item_shared(
        self,
        session: AsyncSession,
        item_type: str,
        item_source: str,
        owner: str,
        *,
        include_collections: bool = False,
    ) -> list[str]:
        """Users who can see *item_source* through shares by *owner*, in share order."""
        rows = await self.item_shared(
            session, item_type, item_source, owner, include_collections=include_collections
        )
        users: list[str] = []
        for row in rows:
            if row.share_type == ShareType.USER and row.share_with:
                candidates = [row.share_with]
            elif row.share_type == ShareType.GROUP and row.share_with:
                candidates = sorted(self._directory.users_in_group(row.share_with))
            else:
                continue
            users.extend(uid for uid in candidates if uid not in users)
        return users

    async def get_share_by_token(self, session: AsyncSession, token: str) -> ShareEdgeBase | None:
        """The live edge carrying *token*, or None."""
        model = self._share_model
        result = await session.execute(select(model).where(model.token == token).order_by(model.id))
        for edge in await self._drop_expired(session, list(result.scalars().all())):
            return edge
        return None


def _column(file_type: bool, *, source: bool) -> str:
    if file_type:
        return "file_source" if source else "file_target"
    return "item_source" if source else "item_target"


def _coerce(item: str | int, column: str) -> str | int:
    if column == "file_source":
        return int(item)
    if column == "file_target":
        return normalize_path(str(item))
    return str(item)
