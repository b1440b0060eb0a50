"""Tests for CascadeService — subtree collection, re-parenting, and narrowing."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from sharegraph.models import ShareEdge
from sharegraph.sharing.cascade import CascadeService
from sharegraph.sharing.types import Permission, ShareType

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from sharegraph import ShareService
    from sharegraph.sharing.directory import InMemoryDirectory

RS = Permission.READ | Permission.SHARE


@pytest.fixture
def cascade(directory: InMemoryDirectory) -> CascadeService:
    return CascadeService(ShareEdge, directory)


async def _edge(session: AsyncSession, **values: Any) -> int:
    """Insert a file share of /doc.txt and return its id."""
    fields: dict[str, Any] = {
        "item_type": "file",
        "item_source": "1",
        "item_target": "/doc.txt",
        "file_source": 1,
        "file_target": "/doc.txt",
        "uid_owner": "alice",
        "permissions": int(Permission.ALL),
    }
    fields.update(values)
    fields["share_type"] = int(fields["share_type"])
    edge = ShareEdge(**fields)
    session.add(edge)
    await session.flush()
    assert edge.id is not None
    return edge.id


# ---------------------------------------------------------------------------
# collect / delete
# ---------------------------------------------------------------------------


class TestCollect:
    async def test_chain(self, async_session: AsyncSession, cascade: CascadeService):
        top = await _edge(async_session, share_type=ShareType.USER, share_with="bob")
        mid = await _edge(async_session, share_type=ShareType.USER, share_with="carol", uid_owner="bob", parent=top)
        leaf = await _edge(
            async_session, share_type=ShareType.USER, share_with="dave", uid_owner="carol", parent=mid,
            permissions=int(Permission.READ),
        )
        assert await cascade.collect(async_session, top) == [top, mid, leaf]

    async def test_leaf_only(self, async_session: AsyncSession, cascade: CascadeService):
        top = await _edge(async_session, share_type=ShareType.USER, share_with="bob")
        assert await cascade.collect(async_session, top) == [top]

    async def test_restrict_to_owner(self, async_session: AsyncSession, cascade: CascadeService):
        group = await _edge(async_session, share_type=ShareType.GROUP, share_with="g1")
        by_bob = await _edge(async_session, share_type=ShareType.USER, share_with="erin", uid_owner="bob", parent=group)
        await _edge(async_session, share_type=ShareType.USER, share_with="dave", uid_owner="carol", parent=group)
        assert await cascade.collect(async_session, group, restrict_to_owner="bob") == [group, by_bob]

    async def test_preserve_overrides(self, async_session: AsyncSession, cascade: CascadeService):
        group = await _edge(async_session, share_type=ShareType.GROUP, share_with="g1")
        override = await _edge(
            async_session, share_type=ShareType.GROUP_USER_OVERRIDE, share_with="carol", parent=group,
            item_target="/doc (2).txt", file_target="/doc (2).txt",
        )
        reshare = await _edge(async_session, share_type=ShareType.USER, share_with="erin", uid_owner="bob", parent=group)

        assert await cascade.collect(async_session, group) == [group, override, reshare]
        assert await cascade.collect(async_session, group, preserve_overrides=True) == [group, reshare]

    async def test_delete_exclude_self(self, async_session: AsyncSession, cascade: CascadeService):
        top = await _edge(async_session, share_type=ShareType.USER, share_with="bob")
        child = await _edge(async_session, share_type=ShareType.USER, share_with="carol", uid_owner="bob", parent=top)

        assert await cascade.delete(async_session, top, exclude_self=True) == [child]
        assert await async_session.get(ShareEdge, top) is not None
        assert await async_session.get(ShareEdge, child) is None

    async def test_delete_nothing_below(self, async_session: AsyncSession, cascade: CascadeService):
        top = await _edge(async_session, share_type=ShareType.USER, share_with="bob")
        assert await cascade.delete(async_session, top, exclude_self=True) == []
        assert await async_session.get(ShareEdge, top) is not None


# ---------------------------------------------------------------------------
# Re-parenting
# ---------------------------------------------------------------------------


class TestReparent:
    async def test_onto_other_share(self, async_session: AsyncSession, cascade: CascadeService):
        direct = await _edge(async_session, share_type=ShareType.USER, share_with="bob")
        group = await _edge(async_session, share_type=ShareType.GROUP, share_with="g1")
        reshare = await _edge(
            async_session, share_type=ShareType.USER, share_with="dave", uid_owner="bob", parent=direct,
            permissions=int(Permission.READ),
        )

        assert await cascade.delete(async_session, direct) == [direct]
        edge = await async_session.get(ShareEdge, reshare)
        assert edge is not None
        assert edge.parent == group

    async def test_not_onto_share_without_share_permission(
        self, async_session: AsyncSession, cascade: CascadeService
    ):
        direct = await _edge(async_session, share_type=ShareType.USER, share_with="bob")
        await _edge(async_session, share_type=ShareType.GROUP, share_with="g1", permissions=int(Permission.READ))
        reshare = await _edge(async_session, share_type=ShareType.USER, share_with="dave", uid_owner="bob", parent=direct)

        assert await cascade.delete(async_session, direct) == [direct, reshare]

    async def test_not_onto_suppressed_group(self, async_session: AsyncSession, cascade: CascadeService):
        direct = await _edge(async_session, share_type=ShareType.USER, share_with="bob")
        group = await _edge(async_session, share_type=ShareType.GROUP, share_with="g1")
        await _edge(
            async_session, share_type=ShareType.GROUP_USER_OVERRIDE, share_with="bob", parent=group, permissions=0
        )
        reshare = await _edge(async_session, share_type=ShareType.USER, share_with="dave", uid_owner="bob", parent=direct)

        assert await cascade.delete(async_session, direct) == [direct, reshare]

    async def test_renamed_member_view_maps_to_group(
        self, async_session: AsyncSession, cascade: CascadeService
    ):
        direct = await _edge(
            async_session, share_type=ShareType.USER, share_with="carol",
            item_target="/doc (2).txt", file_target="/doc (2).txt",
        )
        group = await _edge(async_session, share_type=ShareType.GROUP, share_with="g2")
        await _edge(
            async_session, share_type=ShareType.GROUP_USER_OVERRIDE, share_with="carol", parent=group,
            item_target="/doc (2).txt", file_target="/doc (2).txt",
        )
        reshare = await _edge(
            async_session, share_type=ShareType.USER, share_with="erin", uid_owner="carol", parent=direct,
            item_target="/doc (2).txt", file_target="/doc (2).txt",
        )

        assert await cascade.delete(async_session, direct) == [direct]
        edge = await async_session.get(ShareEdge, reshare)
        assert edge is not None
        assert edge.parent == group

    async def test_unshare_keeps_reshare_reachable(self, service: ShareService):
        direct = await service.share_item("file", "1", ShareType.USER, "bob", "alice", Permission.ALL)
        group = await service.share_item("file", "1", ShareType.GROUP, "g1", "alice", Permission.ALL)
        reshare = await service.share_item("file", "1", ShareType.USER, "dave", "bob", Permission.READ)
        assert reshare.parent == direct.id

        await service.unshare("file", "1", ShareType.USER, "bob", "alice")

        edge = await service.get(reshare.id)  # type: ignore[arg-type]
        assert edge is not None
        assert edge.parent == group.id
        assert len(await service.items_shared_with("file", "dave")) == 1


# ---------------------------------------------------------------------------
# narrow
# ---------------------------------------------------------------------------


class TestNarrow:
    async def test_intersects_down_the_chain(self, async_session: AsyncSession, cascade: CascadeService):
        top = await _edge(async_session, share_type=ShareType.USER, share_with="bob")
        mid = await _edge(async_session, share_type=ShareType.USER, share_with="carol", uid_owner="bob", parent=top)
        leaf = await _edge(
            async_session, share_type=ShareType.USER, share_with="dave", uid_owner="carol", parent=mid,
            permissions=int(Permission.READ | Permission.UPDATE | Permission.CREATE),
        )

        changed = await cascade.narrow(async_session, top, int(Permission.READ | Permission.UPDATE | Permission.SHARE))

        assert changed == [mid, leaf]
        mid_edge = await async_session.get(ShareEdge, mid)
        leaf_edge = await async_session.get(ShareEdge, leaf)
        assert mid_edge is not None and leaf_edge is not None
        assert mid_edge.permissions == Permission.READ | Permission.UPDATE | Permission.SHARE
        assert leaf_edge.permissions == Permission.READ | Permission.UPDATE

    async def test_stops_where_nothing_changes(self, async_session: AsyncSession, cascade: CascadeService):
        group = await _edge(async_session, share_type=ShareType.GROUP, share_with="g1")
        override = await _edge(
            async_session, share_type=ShareType.GROUP_USER_OVERRIDE, share_with="carol", parent=group,
            item_target="/doc (2).txt", file_target="/doc (2).txt",
        )
        reshare = await _edge(async_session, share_type=ShareType.USER, share_with="erin", uid_owner="bob", parent=group)
        leaf = await _edge(
            async_session, share_type=ShareType.USER, share_with="dave", uid_owner="erin", parent=reshare,
            permissions=int(Permission.READ),
        )

        assert await cascade.narrow(async_session, group, int(RS)) == [reshare]

        override_edge = await async_session.get(ShareEdge, override)
        leaf_edge = await async_session.get(ShareEdge, leaf)
        assert override_edge is not None and leaf_edge is not None
        assert override_edge.permissions == Permission.ALL
        assert leaf_edge.permissions == Permission.READ
