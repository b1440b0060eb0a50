"""CascadeService — reshare subtree deletion and permission narrowing.

Reshares point at the edge they were created from through ``parent``.
Both operations walk that chain breadth-first, one query per level.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import delete
from sqlmodel import select

from .types import Permission, ShareType
from .utils import user_and_groups

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from sharegraph.models.shares import ShareEdgeBase

    from .protocol import DirectoryAdapter

logger = logging.getLogger(__name__)

_RECEIVED_TYPES = (ShareType.USER, ShareType.GROUP, ShareType.GROUP_USER_OVERRIDE)


class CascadeService:
    """Walks reshare chains for deletes and permission changes.

    Receives the concrete share model at construction so callers can
    use custom SQLModel subclasses with different table names.
    """

    def __init__(self, share_model: type[ShareEdgeBase], directory: DirectoryAdapter) -> None:
        self._share_model = share_model
        self._directory = directory

    async def collect(
        self,
        session: AsyncSession,
        edge_id: int,
        *,
        restrict_to_owner: str | None = None,
        preserve_overrides: bool = False,
    ) -> list[int]:
        """Return *edge_id* followed by every descendant that must go with it.

        A descendant whose owner received the same item through another
        share carrying SHARE is re-parented onto that share instead of
        being collected.  *restrict_to_owner* limits the first level to
        reshares by that user.  *preserve_overrides* leaves the group
        override rows directly under *edge_id* alone.
        """
        model = self._share_model
        ids = [edge_id]
        seen = {edge_id}
        parents = [edge_id]
        first = True
        while parents:
            query = select(model).where(model.parent.in_(parents))  # type: ignore[union-attr]
            if first and restrict_to_owner is not None:
                query = query.where(model.uid_owner == restrict_to_owner)
            result = await session.execute(query.order_by(model.id))
            children = result.scalars().all()

            parents = []
            for child in children:
                assert child.id is not None
                if child.id in seen:
                    continue
                is_override = child.share_type == ShareType.GROUP_USER_OVERRIDE
                if is_override and first and preserve_overrides:
                    continue
                if not is_override:
                    other = await self._duplicate_parent(session, child, seen)
                    if other is not None:
                        logger.debug(
                            "Re-parenting share %s from %s to %s", child.id, child.parent, other.id
                        )
                        child.parent = other.id
                        continue
                seen.add(child.id)
                ids.append(child.id)
                parents.append(child.id)
            first = False

        await session.flush()
        return ids

    async def _duplicate_parent(
        self,
        session: AsyncSession,
        child: ShareEdgeBase,
        excluded: set[int],
    ) -> ShareEdgeBase | None:
        """Find another live share of the same item to the owner of *child* that grants SHARE.

        This occurs when an item reaches the same user through a group
        and a user share, or through shares by different users.
        """
        model = self._share_model
        scope = user_and_groups(self._directory, child.uid_owner)
        result = await session.execute(
            select(model)
            .where(
                model.item_type == child.item_type,
                model.item_target == child.item_target,
                model.share_type.in_(_RECEIVED_TYPES),  # type: ignore[attr-defined]
                model.share_with.in_(scope),  # type: ignore[union-attr]
                model.uid_owner != child.uid_owner,
                model.id != child.parent,
            )
            .order_by(model.id)
        )
        for candidate in result.scalars().all():
            if candidate.id in excluded or candidate.is_expired():
                continue
            if candidate.share_type == ShareType.GROUP_USER_OVERRIDE:
                # A renamed member view stands for its group row
                view = candidate.override
                if view is None or view.suppressed:
                    continue
                if view.group_edge_id == child.parent or view.group_edge_id in excluded:
                    continue
                group = await session.get(model, view.group_edge_id)
                if group is None or group.is_expired() or not group.permissions & Permission.SHARE:
                    continue
                return group
            if not candidate.permissions & Permission.SHARE:
                continue
            if candidate.share_type == ShareType.GROUP and await self._suppressed_for(
                session, candidate, child.uid_owner
            ):
                continue
            return candidate
        return None

    async def _suppressed_for(self, session: AsyncSession, group: ShareEdgeBase, uid: str) -> bool:
        model = self._share_model
        result = await session.execute(
            select(model).where(
                model.parent == group.id,
                model.share_type == ShareType.GROUP_USER_OVERRIDE,
                model.share_with == uid,
            )
        )
        for edge in result.scalars().all():
            view = edge.override
            if view is not None and view.suppressed:
                return True
        return False

    async def delete(
        self,
        session: AsyncSession,
        edge_id: int,
        *,
        exclude_self: bool = False,
        restrict_to_owner: str | None = None,
        preserve_overrides: bool = False,
    ) -> list[int]:
        """Delete *edge_id* and its reshare subtree in one batch. Returns deleted ids."""
        ids = await self.collect(
            session,
            edge_id,
            restrict_to_owner=restrict_to_owner,
            preserve_overrides=preserve_overrides,
        )
        if exclude_self:
            ids = ids[1:]
        if ids:
            model = self._share_model
            await session.execute(
                delete(model).where(model.id.in_(ids))  # type: ignore[union-attr]
            )
            await session.flush()
            logger.debug("Deleted %d share(s) under %s", len(ids), edge_id)
        return ids

    async def narrow(self, session: AsyncSession, edge_id: int, permissions: int) -> list[int]:
        """Intersect descendant permissions with their parent's, level by level.

        Only children whose permissions actually change are descended
        into.  Override rows follow their group row and are skipped.
        If a node were reachable twice, the smaller mask wins.
        """
        model = self._share_model
        changed: list[int] = []
        frontier: dict[int, int] = {edge_id: permissions}
        visited = {edge_id}
        while frontier:
            result = await session.execute(
                select(model)
                .where(
                    model.parent.in_(list(frontier)),  # type: ignore[union-attr]
                    model.share_type != ShareType.GROUP_USER_OVERRIDE,
                )
                .order_by(model.id)
            )
            next_frontier: dict[int, int] = {}
            for child in result.scalars().all():
                assert child.id is not None and child.parent is not None
                if child.id in visited and child.id not in next_frontier:
                    continue
                mask = frontier[child.parent] & next_frontier.get(child.id, Permission.ALL)
                narrowed = child.permissions & mask
                if narrowed != child.permissions:
                    child.permissions = narrowed
                    next_frontier[child.id] = narrowed
                    changed.append(child.id)
                visited.add(child.id)
            frontier = next_frontier

        if changed:
            await session.flush()
            logger.debug("Narrowed permissions of %d reshare(s) under %s", len(changed), edge_id)
        return changed
