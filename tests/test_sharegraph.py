"""Tests for the synchronous ShareGraph facade."""

from __future__ import annotations

from collections.abc import Iterator
from typing import TYPE_CHECKING

import pytest

from sharegraph import ShareGraph
from sharegraph.sharing.config import SharingConfig
from sharegraph.sharing.exceptions import InvalidRecipientError
from sharegraph.sharing.types import Permission, ShareType

if TYPE_CHECKING:
    from pathlib import Path

    from sharegraph.sharing.directory import InMemoryDirectory
    from tests.conftest import FakeFileBackend, FakeNoteBackend


@pytest.fixture
def graph(
    directory: InMemoryDirectory, files: FakeFileBackend, notes: FakeNoteBackend
) -> Iterator[ShareGraph]:
    g = ShareGraph(directory=directory, config=SharingConfig(bcrypt_rounds=4))
    g.register_backend("file", files)
    g.register_backend("note", notes)
    yield g
    g.close()


class TestShareGraph:
    def test_share_and_read(self, graph: ShareGraph):
        edge = graph.share_item("file", "1", ShareType.GROUP, "g1", "alice", Permission.READ)
        rows = graph.items_shared_with("file", "bob")
        assert [row.id for row in rows] == [edge.id]
        assert graph.item_shared_with("file", "/doc.txt", "carol") is not None

    def test_errors_propagate(self, graph: ShareGraph):
        with pytest.raises(InvalidRecipientError):
            graph.share_item("file", "1", ShareType.USER, "alice", "alice", Permission.READ)

    def test_permissions_and_unshare(self, graph: ShareGraph):
        edge = graph.share_item("note", "n1", ShareType.USER, "bob", "alice", Permission.ALL)
        updated = graph.set_permissions(edge.id, Permission.READ)  # type: ignore[arg-type]
        assert updated.permissions == Permission.READ
        updated = graph.set_permissions_for("note", "n1", ShareType.USER, "bob", "alice", Permission.ALL)
        assert updated.permissions == Permission.ALL
        assert graph.unshare("note", "n1", ShareType.USER, "bob", "alice") is True
        assert graph.get(edge.id) is None  # type: ignore[arg-type]

    def test_links(self, graph: ShareGraph):
        link = graph.share_item("file", "1", ShareType.LINK, None, "alice", Permission.READ, password="pw")
        assert link.token is not None
        found = graph.get_share_by_token(link.token)
        assert found is not None
        assert graph.check_link_password(found, "pw") is True

    def test_hooks(self, graph: ShareGraph, directory: InMemoryDirectory):
        graph.share_item("file", "1", ShareType.GROUP, "g1", "alice", Permission.READ)
        directory.remove_from_group("g1", "bob")
        graph.on_group_membership_removed("g1", "bob")
        assert graph.items_shared_with("file", "bob") == []
        assert graph.users_item_shared("file", "1", "alice") == ["carol"]

    def test_close_idempotent(self, directory: InMemoryDirectory):
        g = ShareGraph(directory=directory)
        g.close()
        g.close()

    def test_close_closes_loop(self, directory: InMemoryDirectory):
        g = ShareGraph(directory=directory)
        g.close()
        assert g._loop.is_closed()
        assert not g._thread.is_alive()

    def test_context_manager(self, directory: InMemoryDirectory, files: FakeFileBackend):
        with ShareGraph(directory=directory) as g:
            g.register_backend("file", files)
            assert g.items_shared("file", "alice") == []

    def test_file_database_persists(
        self, tmp_path: Path, directory: InMemoryDirectory, files: FakeFileBackend
    ):
        url = f"sqlite+aiosqlite:///{tmp_path / 'shares.db'}"
        with ShareGraph(url, directory=directory) as g:
            g.register_backend("file", files)
            g.share_item("file", "1", ShareType.USER, "bob", "alice", Permission.READ)

        with ShareGraph(url, directory=directory) as g:
            g.register_backend("file", files)
            assert len(g.items_shared_with("file", "bob")) == 1
