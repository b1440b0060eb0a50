"""Shared fixtures for sharegraph tests."""

from __future__ import annotations

import posixpath
from typing import TYPE_CHECKING, Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import Session, SQLModel, create_engine

from sharegraph import ShareService
from sharegraph.sharing.config import SharingConfig
from sharegraph.sharing.directory import InMemoryDirectory
from sharegraph.sharing.types import CollectionChild, ShareFormat
from sharegraph.sharing.utils import unique_name

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Iterator

    from sqlalchemy import Engine
    from sqlalchemy.ext.asyncio import AsyncEngine

    from sharegraph.sharing.types import ResolvedShare


# =========================================================================
# Fake item backends
# =========================================================================


class FakeFileBackend:
    """Files indexed by numeric id, each with an owner and a path."""

    def __init__(self, files: dict[str, tuple[str, str]] | None = None) -> None:
        self.files: dict[str, tuple[str, str]] = files if files is not None else {}

    def add(self, file_id: int, owner: str, path: str) -> str:
        self.files[str(file_id)] = (owner, path)
        return str(file_id)

    def is_valid_source(self, item_source: str, uid_owner: str) -> bool:
        entry = self.files.get(item_source)
        return entry is not None and entry[0] == uid_owner

    def generate_target(
        self, item_source: str, share_with: str | None, exclude: list[str] | None = None
    ) -> str:
        return unique_name("/" + posixpath.basename(item_source), exclude)

    def format_items(self, items: list[ResolvedShare], fmt: int, parameters: Any = None) -> Any:
        if fmt == ShareFormat.SOURCES:
            return [item.file_source for item in items]
        return items

    def get_file_path(self, item_source: str, uid_owner: str) -> str | None:
        entry = self.files.get(item_source)
        if entry is None or entry[0] != uid_owner:
            return None
        return entry[1]

    def get_file_source(self, item_source: str, uid_owner: str) -> int | None:
        return int(item_source) if item_source in self.files else None


class FakeFolderBackend(FakeFileBackend):
    """Folders over the same file index; children are the files directly inside."""

    def get_children(self, item_source: str) -> list[CollectionChild]:
        folder = self.files[item_source][1]
        return [
            CollectionChild(
                source=file_id,
                target=posixpath.basename(path),
                file_path=posixpath.basename(path),
            )
            for file_id, (_, path) in sorted(self.files.items())
            if posixpath.dirname(path) == folder
        ]


class FakeNoteBackend:
    """Items that are not files; every target proposal starts from the same name."""

    def __init__(self, name: str = "doc.txt") -> None:
        self.name = name
        self.notes: dict[str, str] = {}

    def add(self, source: str, owner: str) -> str:
        self.notes[source] = owner
        return source

    def is_valid_source(self, item_source: str, uid_owner: str) -> bool:
        return self.notes.get(item_source) == uid_owner

    def generate_target(
        self, item_source: str, share_with: str | None, exclude: list[str] | None = None
    ) -> str:
        return unique_name(self.name, exclude)

    def format_items(self, items: list[ResolvedShare], fmt: int, parameters: Any = None) -> Any:
        return [item.item_target for item in items]


# =========================================================================
# Database
# =========================================================================


@pytest.fixture
def engine() -> Engine:
    """In-memory SQLite engine with all tables created."""
    eng = create_engine("sqlite://", echo=False)
    SQLModel.metadata.create_all(eng)
    return eng


@pytest.fixture
def session(engine: Engine) -> Iterator[Session]:
    """SQLModel session bound to the in-memory engine, rolled back after each test."""
    with Session(engine) as s:
        s.begin()
        yield s
        s.rollback()


@pytest.fixture
async def async_engine() -> AsyncIterator[AsyncEngine]:
    """Async in-memory SQLite engine with all tables created."""
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def async_session(async_engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Async SQLModel session, rolled back after each test."""
    factory = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with factory() as session:
        yield session


# =========================================================================
# Directory and backends
# =========================================================================


@pytest.fixture
def directory() -> InMemoryDirectory:
    """alice, bob, carol, dave, erin; g1 = {bob, carol}, g2 = {carol, dave}."""
    d = InMemoryDirectory()
    d.add_user("alice", "Alice")
    d.add_user("bob", "Bob")
    d.add_user("carol", "Carol")
    d.add_user("dave", "Dave")
    d.add_user("erin", "Erin")
    d.add_group("g1", {"bob", "carol"})
    d.add_group("g2", {"carol", "dave"})
    return d


@pytest.fixture
def files() -> FakeFileBackend:
    f = FakeFileBackend()
    f.add(1, "alice", "/doc.txt")
    f.add(2, "alice", "/work/doc.txt")
    f.add(3, "bob", "/bob.txt")
    f.add(10, "alice", "/photos")
    f.add(11, "alice", "/photos/a.jpg")
    f.add(12, "alice", "/photos/b.jpg")
    return f


@pytest.fixture
def notes() -> FakeNoteBackend:
    n = FakeNoteBackend()
    n.add("n1", "alice")
    n.add("n2", "alice")
    n.add("n3", "dave")
    return n


@pytest.fixture
def config() -> SharingConfig:
    return SharingConfig(bcrypt_rounds=4)


# =========================================================================
# Services
# =========================================================================


@pytest.fixture
async def make_service(
    async_engine: AsyncEngine,
    directory: InMemoryDirectory,
    files: FakeFileBackend,
    notes: FakeNoteBackend,
) -> AsyncIterator[Callable[..., Awaitable[ShareService]]]:
    """Factory for services sharing one database, with the fake backends registered."""
    created: list[ShareService] = []

    async def _make(config: SharingConfig | None = None) -> ShareService:
        svc = ShareService(
            engine=async_engine,
            directory=directory,
            config=config or SharingConfig(bcrypt_rounds=4),
        )
        await svc.open()
        svc.register_backend("file", files)
        svc.register_backend("folder", FakeFolderBackend(files.files), collection_of="file")
        svc.register_backend("note", notes)
        created.append(svc)
        return svc

    yield _make
    for svc in created:
        await svc.close()


@pytest.fixture
async def service(
    make_service: Callable[..., Awaitable[ShareService]], config: SharingConfig
) -> ShareService:
    return await make_service(config)
