"""SharingConfig — share API switches and policy."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping

SHARE_POLICIES = ("global", "groups_only")


def _yes(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("yes", "true", "1", "on")


@dataclass
class SharingConfig:
    """Configuration for a ShareService instance."""

    enabled: bool = True
    """Master switch for the share API.  Reads return nothing when off."""

    allow_links: bool = True
    """If False, link shares are rejected."""

    allow_resharing: bool = True
    """If False, recipients cannot reshare and SHARE is masked on reads."""

    share_policy: str = "global"
    """``"global"`` or ``"groups_only"`` (recipient must share a group with the owner)."""

    password_salt: str = ""
    """Appended to link passwords before hashing."""

    bcrypt_rounds: int = 12
    """Cost factor for link password hashes."""

    def __post_init__(self) -> None:
        if self.share_policy not in SHARE_POLICIES:
            raise ValueError(
                f"Invalid share policy: {self.share_policy!r}. "
                f"Must be one of {', '.join(SHARE_POLICIES)}."
            )

    @property
    def groups_only(self) -> bool:
        return self.share_policy == "groups_only"

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> SharingConfig:
        """Build a config from app-config style keys (``shareapi_enabled="yes"`` etc.)."""
        return cls(
            enabled=_yes(mapping.get("shareapi_enabled"), True),
            allow_links=_yes(mapping.get("shareapi_allow_links"), True),
            allow_resharing=_yes(mapping.get("shareapi_allow_resharing"), True),
            share_policy=mapping.get("shareapi_share_policy") or "global",
            password_salt=mapping.get("passwordsalt") or "",
            bcrypt_rounds=int(mapping.get("bcrypt_rounds", 12)),
        )
