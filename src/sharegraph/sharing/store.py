"""ShareStore — share CRUD, reshare validation, and cascading mutations.

Stateless service that receives the share model at construction and a
session at call time.  Every method flushes but never commits; the
caller owns the transaction so a failed cascade leaves no trace.
"""

from __future__ import annotations

import logging
import secrets
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import bcrypt
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from sharegraph.events import ShareEvent, ShareEventType

from .exceptions import (
    AlreadySharedError,
    BackendRejectedError,
    InvalidRecipientError,
    NotFoundError,
    PermissionExceededError,
    ShareError,
    SharingDisabledError,
)
from .protocol import SupportsFileDependent
from .types import TOKEN_LENGTH, Permission, ShareType, is_file_type
from .utils import to_utc

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from sharegraph.events import EventBus
    from sharegraph.models.shares import ShareEdgeBase

    from .backends import BackendRegistry
    from .cascade import CascadeService
    from .config import SharingConfig
    from .protocol import DirectoryAdapter
    from .resolver import ShareResolver
    from .targets import TargetGenerator
    from .types import ResolvedShare

logger = logging.getLogger(__name__)


def _fail(error: type[ShareError], message: str) -> ShareError:
    logger.error(message)
    return error(message)


class ShareStore:
    """Creates, updates, and removes share edges.

    Constructor receives the concrete share model so callers can use
    custom SQLModel subclasses with different table names.
    """

    def __init__(
        self,
        share_model: type[ShareEdgeBase],
        registry: BackendRegistry,
        directory: DirectoryAdapter,
        config: SharingConfig,
        resolver: ShareResolver,
        targets: TargetGenerator,
        cascade: CascadeService,
        resharing_allowed: Callable[[], bool],
        event_bus: EventBus | None = None,
    ) -> None:
        self._share_model = share_model
        self._registry = registry
        self._directory = directory
        self._config = config
        self._resolver = resolver
        self._targets = targets
        self._cascade = cascade
        self._resharing_allowed = resharing_allowed
        self._event_bus = event_bus

    async def _emit(self, event_type: ShareEventType, item_type: str, item_source: str, payload: dict[str, Any]) -> None:
        if self._event_bus is not None:
            await self._event_bus.emit(ShareEvent(event_type, item_type, item_source, payload))

    def _require_enabled(self) -> None:
        if not self._config.enabled:
            raise _fail(SharingDisabledError, "The share API is disabled")

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def share_item(
        self,
        session: AsyncSession,
        item_type: str,
        item_source: str,
        share_type: int,
        share_with: str | None,
        owner: str,
        permissions: int,
        *,
        password: str | None = None,
    ) -> ShareEdgeBase:
        """Share *item_source* with a user, a group, or via a link.

        For group shares the group row is returned; for link shares
        the returned edge carries the token.  Flushes but does not commit.
        """
        self._require_enabled()
        if permissions < 0 or permissions & ~int(Permission.ALL):
            raise ValueError(f"Invalid permissions: {permissions!r}")

        if share_type == ShareType.USER:
            await self._check_user_share(session, item_type, item_source, share_with, owner)
            return await self._put(session, item_type, item_source, ShareType.USER, share_with, owner, permissions)

        if share_type == ShareType.GROUP:
            await self._check_group_share(session, item_type, item_source, share_with, owner)
            return await self._put(session, item_type, item_source, ShareType.GROUP, share_with, owner, permissions)

        if share_type == ShareType.LINK:
            if not self._config.allow_links:
                raise _fail(
                    SharingDisabledError,
                    f"Sharing {item_source} failed, because sharing with links is not allowed",
                )
            token: str | None = None
            existing = await self._resolver.item_shared_with_by_link(session, item_type, item_source, owner)
            if existing is not None:
                # Replacing a link keeps its public token
                token = existing.token
                await self._cascade.delete(session, existing.id)
            password_hash = self._hash_password(password) if password else None
            return await self._put(
                session, item_type, item_source, ShareType.LINK, password_hash, owner, permissions,
                token=token or secrets.token_urlsafe(TOKEN_LENGTH * 3 // 4),
            )

        raise ValueError(f"Share type {share_type!r} is not valid for {item_source}")

    async def _check_user_share(
        self,
        session: AsyncSession,
        item_type: str,
        item_source: str,
        share_with: str | None,
        owner: str,
    ) -> None:
        if not share_with:
            raise _fail(InvalidRecipientError, f"Sharing {item_source} failed, because no user was given")
        if share_with == owner:
            raise _fail(
                InvalidRecipientError,
                f"Sharing {item_source} failed, because the user {share_with} is the item owner",
            )
        if not self._directory.user_exists(share_with):
            raise _fail(
                InvalidRecipientError,
                f"Sharing {item_source} failed, because the user {share_with} does not exist",
            )
        if self._config.groups_only:
            common = self._directory.groups_of_user(owner) & self._directory.groups_of_user(share_with)
            if not common:
                raise _fail(
                    InvalidRecipientError,
                    f"Sharing {item_source} failed, because the user {share_with} is not a member "
                    f"of any groups that {owner} is a member of",
                )
        # Already shared with the user, either from the same owner or a different user
        existing = await self._resolver.query(
            session, item_type, item_source,
            share_type=ShareType.USER_AND_GROUPS, share_with=share_with,
            limit=1, include_collections=True, by_source=True,
        )
        # The same owner may add a user share on top of a group share to widen permissions
        if existing is not None and (existing.uid_owner != owner or existing.share_type == ShareType.USER):
            raise _fail(
                AlreadySharedError,
                f"Sharing {item_source} failed, because this item is already shared with {share_with}",
            )

    async def _check_group_share(
        self,
        session: AsyncSession,
        item_type: str,
        item_source: str,
        share_with: str | None,
        owner: str,
    ) -> None:
        if not share_with or not self._directory.group_exists(share_with):
            raise _fail(
                InvalidRecipientError,
                f"Sharing {item_source} failed, because the group {share_with} does not exist",
            )
        if self._config.groups_only and share_with not in self._directory.groups_of_user(owner):
            raise _fail(
                InvalidRecipientError,
                f"Sharing {item_source} failed, because {owner} is not a member of the group {share_with}",
            )
        existing = await self._resolver.query(
            session, item_type, item_source,
            share_type=ShareType.GROUP, share_with=share_with,
            limit=1, include_collections=True, by_source=True,
        )
        if existing is not None:
            raise _fail(
                AlreadySharedError,
                f"Sharing {item_source} failed, because this item is already shared with {share_with}",
            )

    async def _put(
        self,
        session: AsyncSession,
        item_type: str,
        item_source: str,
        share_type: ShareType,
        share_with: str | None,
        owner: str,
        permissions: int,
        *,
        token: str | None = None,
    ) -> ShareEdgeBase:
        """Insert the edge (and group override rows), then emit ``post_shared``."""
        backend = self._registry.get(item_type)
        parent: int | None = None
        suggested_item_target: str | None = None
        suggested_file_target: str | None = None
        file_source: int | None = None
        file_path: str | None = None

        # Is the owner resharing something they received?
        received = await self._resolver.item_shared_with_by_source(
            session, item_type, item_source, owner, include_collections=True
        )
        if received is not None:
            if received.uid_owner == share_with and share_type == ShareType.USER:
                raise _fail(
                    InvalidRecipientError,
                    f"Sharing {item_source} failed, because the user {share_with} is the original sharer",
                )
            if not self._resharing_allowed():
                raise _fail(
                    SharingDisabledError,
                    f"Sharing {item_source} failed, because resharing is not allowed",
                )
            if not received.permissions & Permission.SHARE:
                raise _fail(
                    PermissionExceededError,
                    f"Sharing {item_source} failed, because {owner} may not reshare it",
                )
            if ~received.permissions & permissions:
                raise _fail(
                    PermissionExceededError,
                    f"Sharing {item_source} failed, because the permissions exceed "
                    f"permissions granted to {owner}",
                )
            parent = received.id
            item_source = received.item_source
            file_source = received.file_source
            suggested_item_target = received.item_target
            suggested_file_target = received.file_target
            file_path = received.file_target
        else:
            if not backend.is_valid_source(item_source, owner):
                raise _fail(
                    BackendRejectedError,
                    f"Sharing {item_source} failed, because the sharing backend for "
                    f"{item_type} could not find its source",
                )
            if isinstance(backend, SupportsFileDependent):
                file_path = backend.get_file_path(item_source, owner)
                if is_file_type(item_type):
                    file_source = int(item_source)
                else:
                    file_source = backend.get_file_source(item_source, owner)
                if file_source is None or file_source == -1 or file_path is None:
                    raise _fail(
                        BackendRejectedError,
                        f"Sharing {item_source} failed, because the file could not be found in the file cache",
                    )

        if share_type == ShareType.GROUP:
            assert share_with is not None
            edge = await self._put_group(
                session, item_type, item_source, share_with, owner, permissions,
                parent=parent,
                file_source=file_source,
                file_path=file_path,
                suggested_item_target=suggested_item_target,
                suggested_file_target=suggested_file_target,
            )
        else:
            target_with = share_with if share_type == ShareType.USER else None
            item_target, file_target = await self._targets.generate_pair(
                session, item_type, item_source, share_type, target_with, owner,
                suggested_item_target, suggested_file_target,
                file_source=file_source, file_path=file_path,
            )
            edge = self._insert(
                session,
                item_type=item_type,
                item_source=item_source,
                item_target=item_target,
                parent=parent,
                share_type=share_type,
                share_with=share_with,
                uid_owner=owner,
                permissions=permissions,
                file_source=file_source,
                file_target=file_target,
                token=token,
            )
            await self._flush_new(session, item_source, share_with)

        logger.debug("Shared %s %s with %s as %s", item_type, item_source, share_with, edge.id)
        await self._emit(ShareEventType.POST_SHARED, item_type, item_source, edge.payload())
        return edge

    async def _put_group(
        self,
        session: AsyncSession,
        item_type: str,
        item_source: str,
        gid: str,
        owner: str,
        permissions: int,
        *,
        parent: int | None,
        file_source: int | None,
        file_path: str | None,
        suggested_item_target: str | None,
        suggested_file_target: str | None,
    ) -> ShareEdgeBase:
        group_item_target, group_file_target = await self._targets.generate_pair(
            session, item_type, item_source, ShareType.GROUP, gid, owner,
            suggested_item_target, suggested_file_target,
            file_source=file_source, file_path=file_path,
        )
        group = self._insert(
            session,
            item_type=item_type,
            item_source=item_source,
            item_target=group_item_target,
            parent=parent,
            share_type=ShareType.GROUP,
            share_with=gid,
            uid_owner=owner,
            permissions=permissions,
            file_source=file_source,
            file_target=group_file_target,
        )
        await self._flush_new(session, item_source, gid)
        assert group.id is not None

        # Extra rows only for members whose target differs from the group's
        members = sorted(self._directory.users_in_group(gid) - {owner})
        for uid in members:
            item_target, file_target = await self._targets.generate_pair(
                session, item_type, item_source, ShareType.USER, uid, owner,
                suggested_item_target, suggested_file_target, group.id,
                file_source=file_source, file_path=file_path,
            )
            if item_target != group_item_target or file_target != group_file_target:
                self._insert(
                    session,
                    item_type=item_type,
                    item_source=item_source,
                    item_target=item_target,
                    parent=group.id,
                    share_type=ShareType.GROUP_USER_OVERRIDE,
                    share_with=uid,
                    uid_owner=owner,
                    permissions=permissions,
                    stime=group.stime,
                    file_source=file_source,
                    file_target=file_target,
                )
                await session.flush()
        return group

    def _insert(self, session: AsyncSession, **values: Any) -> ShareEdgeBase:
        values["share_type"] = int(values["share_type"])
        values["permissions"] = int(values["permissions"])
        edge = self._share_model(**values)
        edge.validate_shape(self._registry.is_file_dependent(edge.item_type))
        session.add(edge)
        return edge

    async def _flush_new(self, session: AsyncSession, item_source: str, share_with: str | None) -> None:
        """Flush a new share; a concurrent duplicate trips the unique edge index."""
        try:
            await session.flush()
        except IntegrityError as exc:
            raise _fail(
                AlreadySharedError,
                f"Sharing {item_source} failed, because this item is already shared with {share_with}",
            ) from exc

    def _hash_password(self, password: str) -> str:
        salted = (password + self._config.password_salt).encode()
        return bcrypt.hashpw(salted, bcrypt.gensalt(rounds=self._config.bcrypt_rounds)).decode()

    def check_link_password(self, edge: ShareEdgeBase, password: str) -> bool:
        """Return True if *password* opens the link share *edge*.

        Links without a password accept any input.
        """
        if edge.share_type != ShareType.LINK:
            return False
        if not edge.share_with:
            return True
        salted = (password + self._config.password_salt).encode()
        return bcrypt.checkpw(salted, edge.share_with.encode())

    # ------------------------------------------------------------------
    # Remove
    # ------------------------------------------------------------------

    async def unshare(
        self,
        session: AsyncSession,
        item_type: str,
        item_source: str,
        share_type: int,
        share_with: str | None,
        owner: str,
    ) -> bool:
        """Remove the share of *owner* to *share_with*. Returns True if found."""
        self._require_enabled()
        item = await self._resolver.query(
            session, item_type, item_source,
            share_type=share_type, share_with=share_with, owner=owner, limit=1,
        )
        if item is None:
            return False
        await self._emit(
            ShareEventType.PRE_UNSHARE,
            item_type,
            item_source,
            {
                "item_type": item_type,
                "item_source": item_source,
                "file_source": item.file_source,
                "share_type": share_type,
                "share_with": share_with,
                "share": item.to_dict(),
            },
        )
        await self._cascade.delete(session, item.id)
        return True

    async def unshare_all(self, session: AsyncSession, item_type: str, item_source: str, owner: str) -> bool:
        """Remove every share *owner* created for *item_source*. Returns True if any."""
        self._require_enabled()
        shares: list[ResolvedShare] = await self._resolver.item_shared(session, item_type, item_source, owner)
        if not shares:
            return False
        await self._emit(
            ShareEventType.PRE_UNSHARE_ALL,
            item_type,
            item_source,
            {
                "item_type": item_type,
                "item_source": item_source,
                "shares": [share.to_dict() for share in shares],
            },
        )
        for share in shares:
            await self._cascade.delete(session, share.id)
        return True

    async def unshare_from_self(self, session: AsyncSession, item_type: str, item_target: str, viewer: str) -> bool:
        """Hide an item shared with *viewer* from *viewer*. Returns True if found.

        Group shares stay in place; the viewer gets a suppressed override
        row instead, and the viewer's own reshares of it are removed.
        """
        self._require_enabled()
        item = await self._resolver.item_shared_with(session, item_type, item_target, viewer)
        if item is None:
            return False
        if item.share_type == ShareType.GROUP and item.share_with in self._directory.groups_of_user(viewer):
            model = self._share_model
            if item.override_id is not None:
                override = await session.get(model, item.override_id)
                assert override is not None
                override.suppress()
            else:
                group = await session.get(model, item.id)
                assert group is not None
                hidden = self._insert(
                    session,
                    item_type=group.item_type,
                    item_source=group.item_source,
                    item_target=group.item_target,
                    parent=group.id,
                    share_type=ShareType.GROUP_USER_OVERRIDE,
                    share_with=viewer,
                    uid_owner=group.uid_owner,
                    permissions=group.permissions,
                    stime=group.stime,
                    file_source=group.file_source,
                    file_target=group.file_target,
                )
                hidden.suppress()
            await session.flush()
            await self._cascade.delete(session, item.id, exclude_self=True, restrict_to_owner=viewer)
        else:
            await self._cascade.delete(session, item.id)
        return True

    async def delete(
        self,
        session: AsyncSession,
        edge_id: int,
        *,
        exclude_self: bool = False,
        restrict_to_owner: str | None = None,
    ) -> list[int]:
        """Delete an edge and its reshares. Returns deleted ids."""
        if await session.get(self._share_model, edge_id) is None:
            raise _fail(NotFoundError, f"Share {edge_id} not found")
        return await self._cascade.delete(
            session, edge_id, exclude_self=exclude_self, restrict_to_owner=restrict_to_owner
        )

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def set_permissions(self, session: AsyncSession, edge_id: int, permissions: int) -> ShareEdgeBase:
        """Change the permissions of an edge and narrow or drop its reshares.

        Raises ``PermissionExceededError`` if *permissions* exceed the
        parent's; nothing is written in that case.
        """
        self._require_enabled()
        if permissions < 0 or permissions & ~int(Permission.ALL):
            raise ValueError(f"Invalid permissions: {permissions!r}")
        model = self._share_model
        edge = await session.get(model, edge_id)
        if edge is None:
            raise _fail(NotFoundError, f"Setting permissions failed, because share {edge_id} was not found")

        # A reshare may not exceed what its parent grants
        if edge.parent is not None:
            parent = await session.get(model, edge.parent)
            if parent is not None and ~parent.permissions & permissions:
                raise _fail(
                    PermissionExceededError,
                    f"Setting permissions for {edge.item_source} failed, because the permissions "
                    f"exceed permissions granted to {edge.uid_owner}",
                )

        previous = edge.permissions
        edge.permissions = int(permissions)
        await session.flush()

        if previous & ~permissions:
            if previous & Permission.SHARE and not permissions & Permission.SHARE:
                # Without SHARE no reshare may survive
                await self._cascade.delete(session, edge_id, exclude_self=True, preserve_overrides=True)
            else:
                await self._cascade.narrow(session, edge_id, permissions)
        return edge

    async def set_permissions_for(
        self,
        session: AsyncSession,
        item_type: str,
        item_source: str,
        share_type: int,
        share_with: str | None,
        owner: str,
        permissions: int,
    ) -> ShareEdgeBase:
        """Look up *owner*'s share to *share_with* and set its permissions."""
        self._require_enabled()
        item = await self._resolver.query(
            session, item_type, item_source,
            share_type=share_type, share_with=share_with, owner=owner, limit=1,
        )
        if item is None:
            raise _fail(
                NotFoundError,
                f"Setting permissions for {item_source} failed, because the item was not found",
            )
        return await self.set_permissions(session, item.id, permissions)

    async def set_expiration(
        self,
        session: AsyncSession,
        item_type: str,
        item_source: str,
        owner: str,
        date: datetime | str | None,
    ) -> bool:
        """Set or clear the expiration of every share *owner* created for *item_source*."""
        self._require_enabled()
        items: list[ResolvedShare] = await self._resolver.item_shared(session, item_type, item_source, owner)
        if not items:
            return False
        expiration = to_utc(date)
        model = self._share_model
        for item in items:
            edge = await session.get(model, item.id)
            if edge is not None:
                edge.expiration = expiration
        await session.flush()
        return True

    async def sweep_expired(self, session: AsyncSession) -> list[int]:
        """Delete every expired edge and its reshares. Returns deleted ids."""
        model = self._share_model
        result = await session.execute(
            select(model).where(model.expiration.is_not(None)).order_by(model.id)  # type: ignore[union-attr]
        )
        now = datetime.now(UTC)
        deleted: list[int] = []
        for edge in result.scalars().all():
            if edge.id in deleted or not edge.is_expired(now):
                continue
            assert edge.id is not None
            deleted.extend(await self._cascade.delete(session, edge.id))
        return deleted
