"""ShareService — async facade wiring the sharing components to a database."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sharegraph.events import EventBus
from sharegraph.models.shares import ShareEdge
from sharegraph.sharing.backends import BackendRegistry
from sharegraph.sharing.cascade import CascadeService
from sharegraph.sharing.config import SharingConfig
from sharegraph.sharing.directory import InMemoryDirectory
from sharegraph.sharing.hooks import LifecycleHooks
from sharegraph.sharing.resolver import ShareResolver
from sharegraph.sharing.store import ShareStore
from sharegraph.sharing.targets import TargetGenerator
from sharegraph.sharing.types import ShareFormat

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncEngine

    from sharegraph.models.shares import ShareEdgeBase
    from sharegraph.sharing.backends import BackendRegistration
    from sharegraph.sharing.protocol import DirectoryAdapter, ItemBackend
    from sharegraph.sharing.types import ResolvedShare

logger = logging.getLogger(__name__)


class ShareService:
    """Async facade over the share store, resolver, and lifecycle hooks.

    Every public operation runs in its own transaction: it commits on
    success and rolls back on any exception, so a failed cascade never
    leaves partial changes behind.

    Usage::

        engine = create_async_engine("postgresql+asyncpg://...")
        async with ShareService(engine=engine, directory=directory) as shares:
            shares.register_backend("file", FileBackend())
            await shares.share_item("file", "42", ShareType.USER, "bob", "alice", Permission.READ)
    """

    def __init__(
        self,
        *,
        engine: AsyncEngine | None = None,
        session_factory: Callable[..., AsyncSession] | None = None,
        directory: DirectoryAdapter | None = None,
        config: SharingConfig | None = None,
        event_bus: EventBus | None = None,
        share_model: type[ShareEdgeBase] = ShareEdge,
    ) -> None:
        if engine is not None and session_factory is not None:
            raise ValueError("Provide engine or session_factory, not both")
        if engine is None and session_factory is None:
            raise ValueError("Provide engine or session_factory")
        self._engine = engine
        if session_factory is None:
            session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        self._session_factory = session_factory
        self._closed = False

        self._share_model = share_model
        self._directory: DirectoryAdapter = directory if directory is not None else InMemoryDirectory()
        self._config = config or SharingConfig()
        self._event_bus = event_bus or EventBus()
        self._resharing: bool | None = None

        # Leaf to root: registry, cascade, resolver, targets, store, hooks
        self._registry = BackendRegistry()
        self._cascade = CascadeService(share_model, self._directory)
        self._resolver = ShareResolver(
            share_model, self._registry, self._directory, self._config,
            self._cascade, self.is_resharing_allowed,
        )
        self._targets = TargetGenerator(share_model, self._registry, self._directory, self._resolver)
        self._store = ShareStore(
            share_model, self._registry, self._directory, self._config,
            self._resolver, self._targets, self._cascade,
            self.is_resharing_allowed, self._event_bus,
        )
        self._hooks = LifecycleHooks(share_model, self._registry, self._targets, self._cascade)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Create the share table if an engine was given."""
        if self._engine is None:
            return
        model = self._share_model
        async with self._engine.begin() as conn:
            await conn.run_sync(
                lambda c: model.__table__.create(c, checkfirst=True)  # type: ignore[attr-defined]
            )

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._event_bus.clear()

    async def __aenter__(self) -> ShareService:
        await self.open()
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self.close()

    @asynccontextmanager
    async def _transaction(self) -> AsyncGenerator[AsyncSession]:
        """Yield a session, committing on success and rolling back on error."""
        if self._closed:
            raise RuntimeError("ShareService is closed")
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def registry(self) -> BackendRegistry:
        return self._registry

    @property
    def directory(self) -> DirectoryAdapter:
        return self._directory

    @property
    def config(self) -> SharingConfig:
        return self._config

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def store(self) -> ShareStore:
        return self._store

    @property
    def resolver(self) -> ShareResolver:
        return self._resolver

    def is_resharing_allowed(self) -> bool:
        """Global resharing switch, read from the config once per instance."""
        if self._resharing is None:
            self._resharing = self._config.allow_resharing
        return self._resharing

    # ------------------------------------------------------------------
    # Backends
    # ------------------------------------------------------------------

    def register_backend(
        self,
        item_type: str,
        backend: ItemBackend,
        *,
        collection_of: str | None = None,
        supported_file_extensions: list[str] | None = None,
    ) -> BackendRegistration:
        return self._registry.register(
            item_type,
            backend,
            collection_of=collection_of,
            supported_file_extensions=supported_file_extensions,
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def share_item(
        self,
        item_type: str,
        item_source: str,
        share_type: int,
        share_with: str | None,
        owner: str,
        permissions: int,
        *,
        password: str | None = None,
    ) -> ShareEdgeBase:
        async with self._transaction() as session:
            return await self._store.share_item(
                session, item_type, item_source, share_type, share_with, owner, permissions,
                password=password,
            )

    async def unshare(
        self,
        item_type: str,
        item_source: str,
        share_type: int,
        share_with: str | None,
        owner: str,
    ) -> bool:
        async with self._transaction() as session:
            return await self._store.unshare(session, item_type, item_source, share_type, share_with, owner)

    async def unshare_all(self, item_type: str, item_source: str, owner: str) -> bool:
        async with self._transaction() as session:
            return await self._store.unshare_all(session, item_type, item_source, owner)

    async def unshare_from_self(self, item_type: str, item_target: str, viewer: str) -> bool:
        async with self._transaction() as session:
            return await self._store.unshare_from_self(session, item_type, item_target, viewer)

    async def set_permissions(self, edge_id: int, permissions: int) -> ShareEdgeBase:
        async with self._transaction() as session:
            return await self._store.set_permissions(session, edge_id, permissions)

    async def set_permissions_for(
        self,
        item_type: str,
        item_source: str,
        share_type: int,
        share_with: str | None,
        owner: str,
        permissions: int,
    ) -> ShareEdgeBase:
        async with self._transaction() as session:
            return await self._store.set_permissions_for(
                session, item_type, item_source, share_type, share_with, owner, permissions
            )

    async def set_expiration(
        self,
        item_type: str,
        item_source: str,
        owner: str,
        date: datetime | str | None,
    ) -> bool:
        async with self._transaction() as session:
            return await self._store.set_expiration(session, item_type, item_source, owner, date)

    async def delete(
        self,
        edge_id: int,
        *,
        exclude_self: bool = False,
        restrict_to_owner: str | None = None,
    ) -> list[int]:
        async with self._transaction() as session:
            return await self._store.delete(
                session, edge_id, exclude_self=exclude_self, restrict_to_owner=restrict_to_owner
            )

    async def sweep_expired(self) -> list[int]:
        async with self._transaction() as session:
            return await self._store.sweep_expired(session)

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    async def get_share_by_token(self, token: str) -> ShareEdgeBase | None:
        async with self._transaction() as session:
            return await self._resolver.get_share_by_token(session, token)

    def check_link_password(self, edge: ShareEdgeBase, password: str) -> bool:
        return self._store.check_link_password(edge, password)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, edge_id: int) -> ShareEdgeBase | None:
        """Return the raw edge with *edge_id*, or None."""
        async with self._transaction() as session:
            return await session.get(self._share_model, edge_id)

    async def query(
        self,
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
        async with self._transaction() as session:
            return await self._resolver.query(
                session, item_type, item,
                share_type=share_type, share_with=share_with, owner=owner,
                fmt=fmt, parameters=parameters, limit=limit,
                include_collections=include_collections, by_source=by_source,
            )

    async def items_shared_with(
        self,
        item_type: str,
        viewer: str,
        *,
        fmt: int = ShareFormat.NONE,
        parameters: Any = None,
        limit: int = -1,
        include_collections: bool = False,
    ) -> Any:
        async with self._transaction() as session:
            return await self._resolver.items_shared_with(
                session, item_type, viewer,
                fmt=fmt, parameters=parameters, limit=limit,
                include_collections=include_collections,
            )

    async def item_shared_with(
        self,
        item_type: str,
        item_target: str,
        viewer: str,
        *,
        fmt: int = ShareFormat.NONE,
        parameters: Any = None,
        include_collections: bool = False,
    ) -> Any:
        async with self._transaction() as session:
            return await self._resolver.item_shared_with(
                session, item_type, item_target, viewer,
                fmt=fmt, parameters=parameters, include_collections=include_collections,
            )

    async def item_shared_with_by_source(
        self,
        item_type: str,
        item_source: str,
        viewer: str,
        *,
        fmt: int = ShareFormat.NONE,
        parameters: Any = None,
        include_collections: bool = False,
    ) -> Any:
        async with self._transaction() as session:
            return await self._resolver.item_shared_with_by_source(
                session, item_type, item_source, viewer,
                fmt=fmt, parameters=parameters, include_collections=include_collections,
            )

    async def item_shared_with_by_link(
        self, item_type: str, item_source: str, owner: str
    ) -> ResolvedShare | None:
        async with self._transaction() as session:
            return await self._resolver.item_shared_with_by_link(session, item_type, item_source, owner)

    async def items_shared(
        self,
        item_type: str,
        owner: str,
        *,
        fmt: int = ShareFormat.NONE,
        parameters: Any = None,
        limit: int = -1,
        include_collections: bool = False,
    ) -> Any:
        async with self._transaction() as session:
            return await self._resolver.items_shared(
                session, item_type, owner,
                fmt=fmt, parameters=parameters, limit=limit,
                include_collections=include_collections,
            )

    async def item_shared(
        self,
        item_type: str,
        item_source: str,
        owner: str,
        *,
        fmt: int = ShareFormat.NONE,
        parameters: Any = None,
        include_collections: bool = False,
    ) -> Any:
        async with self._transaction() as session:
            return await self._resolver.item_shared(
                session, item_type, item_source, owner,
                fmt=fmt, parameters=parameters, include_collections=include_collections,
            )

    async def users_item_shared(
        self,
        item_type: str,
        item_source: str,
        owner: str,
        *,
        include_collections: bool = False,
    ) -> list[str]:
        async with self._transaction() as session:
            return await self._resolver.users_item_shared(
                session, item_type, item_source, owner, include_collections=include_collections
            )

    # ------------------------------------------------------------------
    # Lifecycle hooks
    # ------------------------------------------------------------------

    async def on_user_deleted(self, uid: str) -> list[int]:
        async with self._transaction() as session:
            return await self._hooks.on_user_deleted(session, uid)

    async def on_group_membership_added(self, gid: str, uid: str) -> int:
        async with self._transaction() as session:
            return await self._hooks.on_group_membership_added(session, gid, uid)

    async def on_group_membership_removed(self, gid: str, uid: str) -> list[int]:
        async with self._transaction() as session:
            return await self._hooks.on_group_membership_removed(session, gid, uid)

    async def on_group_deleted(self, gid: str) -> list[int]:
        async with self._transaction() as session:
            return await self._hooks.on_group_deleted(session, gid)
