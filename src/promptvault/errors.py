"""Error taxonomy shared by services, the API and the CLI."""

from __future__ import annotations


class PromptVaultError(Exception):
    """Base class for all promptvault errors."""


class ValidationError(PromptVaultError, ValueError):
    """A required field is missing or a value is out of range."""


class NotFoundError(PromptVaultError, ValueError):
    """A referenced prompt, collection, tag or category does not exist."""


class UnauthorizedError(PromptVaultError):
    """Missing or invalid credential, or an ownership mismatch."""


class QuotaExceededError(PromptVaultError):
    """The account has used up its monthly analysis quota."""


class ProviderError(PromptVaultError):
    """An external analysis or payment call failed or returned garbage."""


class StorageError(PromptVaultError):
    """The persistence layer failed."""


class ConflictError(PromptVaultError):
    """A concurrent write was detected; the operation may be retried."""
