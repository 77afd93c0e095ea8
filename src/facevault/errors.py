"""Exception hierarchy shared by the core and the API layer."""

from __future__ import annotations


class FaceVaultError(Exception):
    """Base class for all FaceVault errors."""


class ValidationError(FaceVaultError):
    """A request is missing a name, images, or carries invalid values."""


class NotRegisteredError(FaceVaultError):
    """No profile is stored under the requested name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Person not registered: {name}")
        self.name = name


class ImageError(FaceVaultError):
    """An image could not be decoded, cropped, or exceeds the configured limits."""


class ExtractionError(FaceVaultError):
    """The embedding model rejected its input or failed at runtime."""


class ProfileStoreError(FaceVaultError):
    """A stored profile could not be read back."""
