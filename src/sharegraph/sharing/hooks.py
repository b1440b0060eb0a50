"""LifecycleHooks — share cleanup driven by user and group changes.

The directory fires these after the change has been applied, so a
deleted user or group is already gone from it and a removed member no
longer appears in ``groups_of_user``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlmodel import select

from .protocol import SupportsFileDependent
from .types import ShareType, is_file_type

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from sharegraph.models.shares import ShareEdgeBase

    from .backends import BackendRegistry
    from .cascade import CascadeService
    from .targets import TargetGenerator

logger = logging.getLogger(__name__)


class LifecycleHooks:
    """Keeps share edges consistent with the user/group directory."""

    def __init__(
        self,
        share_model: type[ShareEdgeBase],
        registry: BackendRegistry,
        targets: TargetGenerator,
        cascade: CascadeService,
    ) -> None:
        self._share_model = share_model
        self._registry = registry
        self._targets = targets
        self._cascade = cascade

    async def _delete_each(self, session: AsyncSession, edge_ids: list[int]) -> list[int]:
        deleted: list[int] = []
        for edge_id in edge_ids:
            if edge_id in deleted:
                continue
            if await session.get(self._share_model, edge_id) is None:
                continue
            deleted.extend(await self._cascade.delete(session, edge_id))
        return deleted

    async def on_user_deleted(self, session: AsyncSession, uid: str) -> list[int]:
        """Delete every share to *uid* and every share *uid* created, with their reshares."""
        model = self._share_model
        result = await session.execute(
            select(model.id)
            .where(
                model.share_with == uid,
                model.share_type.in_(  # type: ignore[attr-defined]
                    (ShareType.USER, ShareType.GROUP_USER_OVERRIDE)
                ),
            )
            .order_by(model.id)
        )
        received = list(result.scalars().all())
        result = await session.execute(select(model.id).where(model.uid_owner == uid).order_by(model.id))
        owned = list(result.scalars().all())

        deleted = await self._delete_each(session, [*received, *owned])
        logger.debug("Removed %d share(s) of deleted user %s", len(deleted), uid)
        return deleted

    async def on_group_membership_added(self, session: AsyncSession, gid: str, uid: str) -> int:
        """Give *uid* an override row on each share to *gid* where its target would differ.

        Returns the number of override rows inserted.
        """
        model = self._share_model
        result = await session.execute(
            select(model)
            .where(model.share_type == ShareType.GROUP, model.share_with == gid)
            .order_by(model.id)
        )
        added = 0
        for group in result.scalars().all():
            assert group.id is not None
            if group.uid_owner == uid or group.is_expired():
                continue
            file_path: str | None = None
            if group.file_source is not None:
                backend = self._registry.get(group.item_type)
                if is_file_type(group.item_type) or not isinstance(backend, SupportsFileDependent):
                    file_path = group.file_target
                else:
                    file_path = backend.get_file_path(group.item_source, group.uid_owner)
            item_target, file_target = await self._targets.generate_pair(
                session, group.item_type, group.item_source, ShareType.USER, uid, group.uid_owner,
                group_parent=group.id,
                file_source=group.file_source,
                file_path=file_path,
            )
            if item_target == group.item_target and file_target == group.file_target:
                continue
            override = model(
                item_type=group.item_type,
                item_source=group.item_source,
                item_target=item_target,
                parent=group.id,
                share_type=int(ShareType.GROUP_USER_OVERRIDE),
                share_with=uid,
                uid_owner=group.uid_owner,
                permissions=group.permissions,
                stime=group.stime,
                file_source=group.file_source,
                file_target=file_target,
            )
            override.validate_shape(self._registry.is_file_dependent(group.item_type))
            session.add(override)
            await session.flush()
            added += 1
        return added

    async def on_group_membership_removed(self, session: AsyncSession, gid: str, uid: str) -> list[int]:
        """Drop *uid*'s override rows and reshares under the shares to *gid*."""
        model = self._share_model
        result = await session.execute(
            select(model.id)
            .where(model.share_type == ShareType.GROUP, model.share_with == gid)
            .order_by(model.id)
        )
        group_ids = list(result.scalars().all())
        if not group_ids:
            return []

        result = await session.execute(
            select(model.id)
            .where(
                model.parent.in_(group_ids),  # type: ignore[union-attr]
                model.share_type == ShareType.GROUP_USER_OVERRIDE,
                model.share_with == uid,
            )
            .order_by(model.id)
        )
        deleted = await self._delete_each(session, list(result.scalars().all()))
        for group_id in group_ids:
            deleted.extend(
                await self._cascade.delete(session, group_id, exclude_self=True, restrict_to_owner=uid)
            )
        return deleted

    async def on_group_deleted(self, session: AsyncSession, gid: str) -> list[int]:
        """Delete every share to *gid*, with override rows and reshares."""
        model = self._share_model
        result = await session.execute(
            select(model.id)
            .where(model.share_type == ShareType.GROUP, model.share_with == gid)
            .order_by(model.id)
        )
        deleted = await self._delete_each(session, list(result.scalars().all()))
        logger.debug("Removed %d share(s) of deleted group %s", len(deleted), gid)
        return deleted
