"""Path, name, and date helpers shared by the sharing services."""

from __future__ import annotations

import posixpath
import re
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .protocol import DirectoryAdapter

_NUMBERED_RE = re.compile(r"^(?P<stem>.*) \((?P<n>\d+)\)$")


def normalize_path(path: str) -> str:
    """Normalize a file target path.

    - Ensures leading /
    - Resolves .. and . references
    - Removes double slashes
    - Removes trailing slash (except for root)

    Examples:
        normalize_path("foo.txt") -> "/foo.txt"
        normalize_path("/foo//bar.txt") -> "/foo/bar.txt"
        normalize_path("/foo/") -> "/foo"
        normalize_path("") -> "/"
    """
    if not path:
        return "/"

    path = path.strip()

    if not path.startswith("/"):
        path = "/" + path

    path = posixpath.normpath(path)

    if path != "/" and path.endswith("/"):
        path = path[:-1]

    return path


def split_name(name: str) -> tuple[str, str]:
    """Split *name* into (stem, extension), keeping dotfiles whole.

    Examples:
        split_name("doc.txt") -> ("doc", ".txt")
        split_name("/Shared/doc.tar.gz") -> ("/Shared/doc.tar", ".gz")
        split_name(".bashrc") -> (".bashrc", "")
    """
    head, tail = posixpath.split(name)
    stem, ext = posixpath.splitext(tail)
    if not stem:
        stem, ext = tail, ""
    return posixpath.join(head, stem) if head else stem, ext


def unique_name(name: str, exclude: Iterable[str] | None) -> str:
    """Return *name*, or the first ``stem (n).ext`` not in *exclude*.

    Examples:
        unique_name("doc.txt", ["doc.txt"]) -> "doc (2).txt"
        unique_name("doc.txt", ["doc.txt", "doc (2).txt"]) -> "doc (3).txt"
    """
    taken = set(exclude or ())
    if name not in taken:
        return name
    stem, ext = split_name(name)
    match = _NUMBERED_RE.match(stem)
    if match:
        stem = match.group("stem")
    n = 2
    while f"{stem} ({n}){ext}" in taken:
        n += 1
    return f"{stem} ({n}){ext}"


def user_and_groups(directory: DirectoryAdapter, uid: str) -> list[str]:
    """*uid* followed by the user's groups in sorted order."""
    return [uid, *sorted(directory.groups_of_user(uid))]


def to_utc(value: datetime | str | None) -> datetime | None:
    """Coerce an expiration value to an aware UTC datetime.

    Accepts a datetime (naive values are taken as UTC), an ISO-8601
    string, or ``""``/``None`` to clear.
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
