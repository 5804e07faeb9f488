"""Error types raised by vaultsync operations."""


class VaultSyncError(Exception):
    """Base class for all vaultsync errors."""
    pass


class NotFoundError(VaultSyncError):
    """A named vault object does not exist."""

    kind = "object"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"{self.kind.capitalize()} '{name}' not found")


class FolderNotFoundError(NotFoundError):
    kind = "folder"


class GroupNotFoundError(NotFoundError):
    kind = "group"


class UserNotFoundError(NotFoundError):
    kind = "user"


class ResourceNotFoundError(NotFoundError):
    kind = "resource"


class AmbiguousFolderError(VaultSyncError):
    """Several folders match a name case-insensitively and none matches exactly."""

    def __init__(self, name: str, candidates):
        self.name = name
        self.candidates = list(candidates)
        super().__init__(
            f"Folder name '{name}' is ambiguous, matches: {', '.join(self.candidates)}"
        )


class LocalFileError(VaultSyncError):
    """Reading or writing a local secrets file failed."""
    pass


class ExternalToolError(VaultSyncError):
    """The external project secrets tool failed."""
    pass


class AuthFailureError(VaultSyncError):
    """The vault rejected our credentials, even after logging in again."""
    pass


class OperationTimeoutError(VaultSyncError):
    """The overall time budget of a command was exceeded."""
    pass


class VaultError(VaultSyncError):
    """A vault call failed for a reason other than auth or not-found."""
    pass


class PushError(VaultSyncError):
    """One or more push actions failed."""

    def __init__(self, failed_keys):
        self.failed_keys = list(failed_keys)
        super().__init__(f"Failed to push secrets: {', '.join(self.failed_keys)}")
