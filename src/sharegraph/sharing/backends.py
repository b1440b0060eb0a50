"""BackendRegistry and BackendRegistration."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .exceptions import AlreadyRegisteredError, BackendNotRegisteredError
from .protocol import ItemBackend, SupportsCollection, SupportsFileDependent
from .types import is_file_type

logger = logging.getLogger(__name__)


@dataclass
class BackendRegistration:
    """Configuration for a single item type."""

    item_type: str
    """Tag stored in ``item_type``, e.g. "file", "calendar-event"."""

    backend: ItemBackend
    """Backend implementing the ItemBackend protocol."""

    collection_of: str | None = None
    """Item type this type is a collection of (an album is a collection of songs)."""

    supported_file_extensions: list[str] = field(default_factory=list)
    """File extensions this type can be converted from, if it depends on files."""

    @property
    def is_collection(self) -> bool:
        return isinstance(self.backend, SupportsCollection)

    @property
    def is_file_dependent(self) -> bool:
        return isinstance(self.backend, SupportsFileDependent)

    @property
    def nests_itself(self) -> bool:
        """True when collections of this type may contain collections of the same type."""
        if not self.is_collection:
            return False
        return self.collection_of == self.item_type or self.item_type == "folder"


class BackendRegistry:
    """Registry of item backends keyed by item type.

    The first registration for an item type wins; later ones are
    rejected.
    """

    def __init__(self) -> None:
        self._registrations: dict[str, BackendRegistration] = {}

    def register(
        self,
        item_type: str,
        backend: ItemBackend,
        *,
        collection_of: str | None = None,
        supported_file_extensions: list[str] | None = None,
    ) -> BackendRegistration:
        """Register *backend* for *item_type*."""
        if not isinstance(backend, ItemBackend):
            raise TypeError(
                f"Sharing backend {type(backend).__name__} must implement ItemBackend"
            )
        existing = self._registrations.get(item_type)
        if existing is not None:
            logger.warning(
                "Sharing backend %s not registered, %s is already registered for %s",
                type(backend).__name__,
                type(existing.backend).__name__,
                item_type,
            )
            raise AlreadyRegisteredError(
                f"A sharing backend is already registered for {item_type}"
            )
        registration = BackendRegistration(
            item_type=item_type,
            backend=backend,
            collection_of=collection_of,
            supported_file_extensions=list(supported_file_extensions or []),
        )
        self._registrations[item_type] = registration
        return registration

    def unregister(self, item_type: str) -> bool:
        """Remove the backend for *item_type*. Return True if found."""
        return self._registrations.pop(item_type, None) is not None

    def get_registration(self, item_type: str) -> BackendRegistration:
        try:
            return self._registrations[item_type]
        except KeyError:
            logger.error("Sharing backend for %s not found", item_type)
            raise BackendNotRegisteredError(
                f"Sharing backend for {item_type} not found"
            ) from None

    def get(self, item_type: str) -> ItemBackend:
        """Return the backend for *item_type*."""
        return self.get_registration(item_type).backend

    def has_backend(self, item_type: str) -> bool:
        return item_type in self._registrations

    def list_item_types(self) -> list[str]:
        """Registered item types in registration order."""
        return list(self._registrations)

    def is_file_dependent(self, item_type: str) -> bool:
        """True when shares of *item_type* carry a file source and file target."""
        if is_file_type(item_type):
            return True
        return self.get_registration(item_type).is_file_dependent

    def collection_types(self, item_type: str) -> list[str]:
        """Item types that (transitively) collect *item_type*.

        *item_type* itself is included only when it is a collection of
        itself, since collections can be inside collections.
        """
        registration = self.get_registration(item_type)
        found = [item_type]
        changed = True
        while changed:
            changed = False
            for other in self._registrations.values():
                if other.item_type in found:
                    continue
                if other.collection_of is not None and other.collection_of in found:
                    found.append(other.item_type)
                    changed = True
        if not registration.nests_itself:
            found.remove(item_type)
        return found
