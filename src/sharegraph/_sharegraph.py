"""ShareGraph — synchronous wrapper around ShareService."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import create_async_engine

from sharegraph._service import ShareService
from sharegraph.sharing.types import ShareFormat

if TYPE_CHECKING:
    from datetime import datetime

    from sharegraph.events import EventBus
    from sharegraph.models.shares import ShareEdgeBase
    from sharegraph.sharing.backends import BackendRegistration
    from sharegraph.sharing.config import SharingConfig
    from sharegraph.sharing.protocol import DirectoryAdapter, ItemBackend
    from sharegraph.sharing.types import ResolvedShare

logger = logging.getLogger(__name__)


class ShareGraph:
    """Synchronous sharing API backed by a private event loop in a background thread.

    The service is async internally; the loop bridges the gap so
    callers can share items from plain sync code or from inside an
    existing async context.

    Usage::

        with ShareGraph("sqlite+aiosqlite:///shares.db", directory=directory) as shares:
            shares.register_backend("file", FileBackend())
            shares.share_item("file", "42", ShareType.USER, "bob", "alice", Permission.READ)
    """

    def __init__(
        self,
        url: str = "sqlite+aiosqlite://",
        *,
        directory: DirectoryAdapter | None = None,
        config: SharingConfig | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._closed = False

        # Private event loop in a daemon thread
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, daemon=True)
        self._thread.start()

        self._service: ShareService = self._run(
            self._async_init(url, directory, config, event_bus)
        )

    async def _async_init(
        self,
        url: str,
        directory: DirectoryAdapter | None,
        config: SharingConfig | None,
        event_bus: EventBus | None,
    ) -> ShareService:
        # The engine must be created on the loop that will use it
        self._engine = create_async_engine(url, echo=False)
        service = ShareService(
            engine=self._engine, directory=directory, config=config, event_bus=event_bus
        )
        await service.open()
        return service

    def _run(self, coro: Any) -> Any:
        """Submit *coro* to the private loop and block for the result."""
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the service and dispose the engine, then stop and close the private loop."""
        if self._closed:
            return
        self._closed = True

        try:
            self._run(self._async_close())
        finally:
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout=5)
            if not self._thread.is_alive():
                self._loop.close()

    async def _async_close(self) -> None:
        await self._service.close()
        await self._engine.dispose()

    def __enter__(self) -> ShareGraph:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()

    @property
    def service(self) -> ShareService:
        return self._service

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
        return self._service.register_backend(
            item_type,
            backend,
            collection_of=collection_of,
            supported_file_extensions=supported_file_extensions,
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def share_item(
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
        return self._run(
            self._service.share_item(
                item_type, item_source, share_type, share_with, owner, permissions,
                password=password,
            )
        )

    def unshare(
        self,
        item_type: str,
        item_source: str,
        share_type: int,
        share_with: str | None,
        owner: str,
    ) -> bool:
        return self._run(self._service.unshare(item_type, item_source, share_type, share_with, owner))

    def unshare_all(self, item_type: str, item_source: str, owner: str) -> bool:
        return self._run(self._service.unshare_all(item_type, item_source, owner))

    def unshare_from_self(self, item_type: str, item_target: str, viewer: str) -> bool:
        return self._run(self._service.unshare_from_self(item_type, item_target, viewer))

    def set_permissions(self, edge_id: int, permissions: int) -> ShareEdgeBase:
        return self._run(self._service.set_permissions(edge_id, permissions))

    def set_permissions_for(
        self,
        item_type: str,
        item_source: str,
        share_type: int,
        share_with: str | None,
        owner: str,
        permissions: int,
    ) -> ShareEdgeBase:
        return self._run(
            self._service.set_permissions_for(
                item_type, item_source, share_type, share_with, owner, permissions
            )
        )

    def set_expiration(
        self,
        item_type: str,
        item_source: str,
        owner: str,
        date: datetime | str | None,
    ) -> bool:
        return self._run(self._service.set_expiration(item_type, item_source, owner, date))

    def delete(
        self,
        edge_id: int,
        *,
        exclude_self: bool = False,
        restrict_to_owner: str | None = None,
    ) -> list[int]:
        return self._run(
            self._service.delete(edge_id, exclude_self=exclude_self, restrict_to_owner=restrict_to_owner)
        )

    def sweep_expired(self) -> list[int]:
        return self._run(self._service.sweep_expired())

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    def get_share_by_token(self, token: str) -> ShareEdgeBase | None:
        return self._run(self._service.get_share_by_token(token))

    def check_link_password(self, edge: ShareEdgeBase, password: str) -> bool:
        return self._service.check_link_password(edge, password)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, edge_id: int) -> ShareEdgeBase | None:
        return self._run(self._service.get(edge_id))

    def query(
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
        return self._run(
            self._service.query(
                item_type, item,
                share_type=share_type, share_with=share_with, owner=owner,
                fmt=fmt, parameters=parameters, limit=limit,
                include_collections=include_collections, by_source=by_source,
            )
        )

    def items_shared_with(self, item_type: str, viewer: str, **kwargs: Any) -> Any:
        return self._run(self._service.items_shared_with(item_type, viewer, **kwargs))

    def item_shared_with(self, item_type: str, item_target: str, viewer: str, **kwargs: Any) -> Any:
        return self._run(self._service.item_shared_with(item_type, item_target, viewer, **kwargs))

    def item_shared_with_by_source(self, item_type: str, item_source: str, viewer: str, **kwargs: Any) -> Any:
        return self._run(self._service.item_shared_with_by_source(item_type, item_source, viewer, **kwargs))

    def item_shared_with_by_link(self, item_type: str, item_source: str, owner: str) -> ResolvedShare | None:
        return self._run(self._service.item_shared_with_by_link(item_type, item_source, owner))

    def items_shared(self, item_type: str, owner: str, **kwargs: Any) -> Any:
        return self._run(self._service.items_shared(item_type, owner, **kwargs))

    def item_shared(self, item_type: str, item_source: str, owner: str, **kwargs: Any) -> Any:
        return self._run(self._service.item_shared(item_type, item_source, owner, **kwargs))

    def users_item_shared(self, item_type: str, item_source: str, owner: str, **kwargs: Any) -> list[str]:
        return self._run(self._service.users_item_shared(item_type, item_source, owner, **kwargs))

    # ------------------------------------------------------------------
    # Lifecycle hooks
    # ------------------------------------------------------------------

    def on_user_deleted(self, uid: str) -> list[int]:
        return self._run(self._service.on_user_deleted(uid))

    def on_group_membership_added(self, gid: str, uid: str) -> int:
        return self._run(self._service.on_group_membership_added(gid, uid))

    def on_group_membership_removed(self, gid: str, uid: str) -> list[int]:
        return self._run(self._service.on_group_membership_removed(gid, uid))

    def on_group_deleted(self, gid: str) -> list[int]:
        return self._run(self._service.on_group_deleted(gid))
