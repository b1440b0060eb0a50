"""Custom exception hierarchy for the sharegraph sharing layer."""


class ShareError(Exception):
    """Base exception for all sharing errors."""


class InvalidRecipientError(ShareError):
    """Raised when the recipient does not exist or may not receive the item."""


class AlreadySharedError(ShareError):
    """Raised when the item is already shared with the recipient."""


class PermissionExceededError(ShareError):
    """Raised when requested permissions exceed those of the parent share."""


class BackendRejectedError(ShareError):
    """Raised when the item backend cannot validate the item source."""


class NotFoundError(ShareError):
    """Raised when a share edge does not exist."""


class TargetGenerationExhaustedError(ShareError):
    """Raised when the backend cannot produce an unused target name."""


class SharingDisabledError(ShareError):
    """Raised when sharing, link sharing, or resharing is switched off."""


class BackendNotRegisteredError(ShareError):
    """Raised when no backend is registered for an item type."""


class AlreadyRegisteredError(ShareError):
    """Raised when a backend is registered twice for the same item type."""
