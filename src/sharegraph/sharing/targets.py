"""TargetGenerator — collision-free recipient-visible names."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlmodel import select

from .exceptions import TargetGenerationExhaustedError
from .types import FILE_ITEM_TYPES, ShareType, is_file_type
from .utils import user_and_groups

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from sharegraph.models.shares import ShareEdgeBase

    from .backends import BackendRegistry
    from .protocol import DirectoryAdapter
    from .resolver import ShareResolver

logger = logging.getLogger(__name__)

_RECEIVED_TYPES = (ShareType.USER, ShareType.GROUP, ShareType.GROUP_USER_OVERRIDE)


class TargetGenerator:
    """Produces a target name per share, consulting the backend and existing targets.

    The backend gets two chances: a plain proposal, then a proposal
    with the names already used in the recipient's scope excluded.
    A suggested target (carried down a reshare chain) is tried first.
    """

    def __init__(
        self,
        share_model: type[ShareEdgeBase],
        registry: BackendRegistry,
        directory: DirectoryAdapter,
        resolver: ShareResolver,
    ) -> None:
        self._share_model = share_model
        self._registry = registry
        self._directory = directory
        self._resolver = resolver

    async def generate(
        self,
        session: AsyncSession,
        item_type: str,
        item_source: str,
        share_type: int,
        share_with: str | None,
        owner: str,
        suggested_target: str | None = None,
        group_parent: int | None = None,
        *,
        file_source: int | None = None,
    ) -> str:
        """Return a target for sharing *item_source* with *share_with*.

        *group_parent* is the id of a group row whose member target is
        being generated; that row does not count as a collision.
        *file_source* identifies the item for file types, where
        *item_source* is the file path.
        """
        backend = self._registry.get(item_type)
        if share_type == ShareType.LINK:
            if suggested_target is not None:
                return suggested_target
            return backend.generate_target(item_source, None)

        if share_type == ShareType.USER:
            assert share_with is not None
            query_type = int(ShareType.USER_AND_GROUPS)
            scope = user_and_groups(self._directory, share_with)
        else:
            query_type = int(share_type)
            scope = None

        exclude: list[str] | None = None
        for attempt in range(2):
            if attempt == 0 and suggested_target is not None:
                target = suggested_target
            else:
                recipient = share_with if share_type == ShareType.USER else None
                target = backend.generate_target(item_source, recipient, exclude)
                if exclude is not None and target in exclude:
                    break

            existing = await self._resolver.query(
                session, item_type, target, share_type=query_type, share_with=share_with
            )
            if not existing:
                return target

            for row in existing:
                # The group row itself does not collide with its members
                if group_parent is not None and row.id == group_parent:
                    if len(existing) == 1:
                        return target
                    continue
                if row.uid_owner == owner:
                    if is_file_type(item_type):
                        if file_source is not None and row.file_source == file_source:
                            return target
                    elif row.item_source == item_source:
                        return target

            exclude = await self._scope_targets(session, item_type, share_with, scope)

        logger.error(
            "Sharing backend registered for %s did not generate a unique target for %s",
            item_type,
            item_source,
        )
        raise TargetGenerationExhaustedError(
            f"Sharing backend registered for {item_type} did not generate "
            f"a unique target for {item_source}"
        )

    async def generate_pair(
        self,
        session: AsyncSession,
        item_type: str,
        item_source: str,
        share_type: int,
        share_with: str | None,
        owner: str,
        suggested_item_target: str | None = None,
        suggested_file_target: str | None = None,
        group_parent: int | None = None,
        *,
        file_source: int | None = None,
        file_path: str | None = None,
    ) -> tuple[str, str | None]:
        """Return ``(item_target, file_target)`` for one recipient.

        Files and folders are named by their path, so both targets are
        the generated file target.
        """
        file_target: str | None = None
        if file_source is not None:
            assert file_path is not None
            file_target = await self.generate(
                session, "file", file_path, share_type, share_with, owner,
                suggested_file_target, group_parent, file_source=file_source,
            )
            if is_file_type(item_type):
                return file_target, file_target
        item_target = await self.generate(
            session, item_type, item_source, share_type, share_with, owner,
            suggested_item_target, group_parent,
        )
        return item_target, file_target

    async def _scope_targets(
        self,
        session: AsyncSession,
        item_type: str,
        share_with: str | None,
        scope: list[str] | None,
    ) -> list[str]:
        """Targets already used by the recipient, to improve the backend's chances."""
        model = self._share_model
        column_name = "file_target" if is_file_type(item_type) else "item_target"
        column = getattr(model, column_name)
        if is_file_type(item_type):
            type_match = model.item_type.in_(FILE_ITEM_TYPES)  # type: ignore[attr-defined]
        else:
            type_match = model.item_type == item_type

        if scope is not None:
            conditions = [
                type_match,
                model.share_type.in_(_RECEIVED_TYPES),  # type: ignore[attr-defined]
                model.share_with.in_(scope),  # type: ignore[union-attr]
            ]
        else:
            conditions = [
                type_match,
                model.share_type == ShareType.GROUP,
                model.share_with == share_with,
            ]
        result = await session.execute(select(column).where(*conditions, column.is_not(None)))
        return [name for name in result.scalars().all() if name is not None]
