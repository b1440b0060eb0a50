"""Tests for BackendRegistry and the collaborator protocols."""

from __future__ import annotations

import logging
from typing import Any

import pytest

from sharegraph.sharing.backends import BackendRegistry
from sharegraph.sharing.exceptions import AlreadyRegisteredError, BackendNotRegisteredError
from sharegraph.sharing.protocol import (
    DirectoryAdapter,
    ItemBackend,
    SupportsCollection,
    SupportsFileDependent,
)
from sharegraph.sharing.types import CollectionChild

# ---------------------------------------------------------------------------
# Minimal backends
# ---------------------------------------------------------------------------


class _PlainBackend:
    def is_valid_source(self, item_source: str, uid_owner: str) -> bool:
        return True

    def generate_target(self, item_source: str, share_with: str | None, exclude: list[str] | None = None) -> str:
        return item_source

    def format_items(self, items: list[Any], fmt: int, parameters: Any = None) -> Any:
        return items


class _AlbumBackend(_PlainBackend):
    def get_children(self, item_source: str) -> list[CollectionChild]:
        return [CollectionChild(source="song-1", target="Song 1")]


class _AttachmentBackend(_PlainBackend):
    def get_file_path(self, item_source: str, uid_owner: str) -> str | None:
        return "/attachments/" + item_source

    def get_file_source(self, item_source: str, uid_owner: str) -> int | None:
        return 99


class _NotABackend:
    def is_valid_source(self, item_source: str, uid_owner: str) -> bool:
        return True


# ---------------------------------------------------------------------------
# Protocol checks
# ---------------------------------------------------------------------------


class TestProtocols:
    def test_plain_backend_is_item_backend(self):
        backend = _PlainBackend()
        assert isinstance(backend, ItemBackend)
        assert not isinstance(backend, SupportsCollection)
        assert not isinstance(backend, SupportsFileDependent)

    def test_capability_protocols(self):
        assert isinstance(_AlbumBackend(), SupportsCollection)
        assert isinstance(_AttachmentBackend(), SupportsFileDependent)

    def test_in_memory_directory_is_adapter(self, directory):
        assert isinstance(directory, DirectoryAdapter)


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestRegister:
    def test_register_and_get(self):
        registry = BackendRegistry()
        backend = _PlainBackend()
        registration = registry.register("contact", backend)
        assert registration.item_type == "contact"
        assert registry.get("contact") is backend
        assert registry.has_backend("contact")
        assert registry.list_item_types() == ["contact"]

    def test_rejects_non_backend(self):
        registry = BackendRegistry()
        with pytest.raises(TypeError, match="ItemBackend"):
            registry.register("contact", _NotABackend())  # type: ignore[arg-type]

    def test_duplicate_rejected_first_wins(self, caplog: pytest.LogCaptureFixture):
        registry = BackendRegistry()
        first = _PlainBackend()
        registry.register("contact", first)
        with caplog.at_level(logging.WARNING, logger="sharegraph.sharing.backends"):
            with pytest.raises(AlreadyRegisteredError):
                registry.register("contact", _PlainBackend())
        assert registry.get("contact") is first
        assert "already registered" in caplog.text

    def test_unknown_type(self):
        registry = BackendRegistry()
        with pytest.raises(BackendNotRegisteredError, match="calendar"):
            registry.get("calendar")

    def test_unregister(self):
        registry = BackendRegistry()
        registry.register("contact", _PlainBackend())
        assert registry.unregister("contact") is True
        assert registry.unregister("contact") is False
        assert not registry.has_backend("contact")

    def test_supported_file_extensions_copied(self):
        registry = BackendRegistry()
        extensions = [".ics"]
        registration = registry.register("event", _AttachmentBackend(), supported_file_extensions=extensions)
        extensions.append(".vcs")
        assert registration.supported_file_extensions == [".ics"]


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------


class TestCapabilities:
    def test_file_types_always_file_dependent(self):
        registry = BackendRegistry()
        registry.register("file", _PlainBackend())
        assert registry.is_file_dependent("file") is True

    def test_file_dependent_backend(self):
        registry = BackendRegistry()
        registry.register("event", _AttachmentBackend())
        registry.register("contact", _PlainBackend())
        assert registry.is_file_dependent("event") is True
        assert registry.is_file_dependent("contact") is False

    def test_collection_types_transitive(self):
        registry = BackendRegistry()
        registry.register("song", _PlainBackend())
        registry.register("album", _AlbumBackend(), collection_of="song")
        registry.register("library", _AlbumBackend(), collection_of="album")
        assert registry.collection_types("song") == ["album", "library"]
        assert registry.collection_types("album") == ["library"]
        assert registry.collection_types("library") == []

    def test_self_nesting_collection(self):
        registry = BackendRegistry()
        registry.register("file", _PlainBackend())
        registry.register("folder", _AlbumBackend(), collection_of="file")
        assert registry.collection_types("file") == ["folder"]
        assert registry.collection_types("folder") == ["folder"]

    def test_collection_of_itself(self):
        registry = BackendRegistry()
        registry.register("playlist", _AlbumBackend(), collection_of="playlist")
        assert registry.collection_types("playlist") == ["playlist"]
