"""
Exception types for BurnVault.
"""


class SecretShareError(Exception):
    """Base class for all BurnVault errors."""

    code = "error"


class SecretNotFoundError(SecretShareError):
    """Token unknown to the vault (never issued, already taken, or lost on restart)."""

    code = "not_found"


class SecretAlreadyUsedError(SecretShareError):
    """The ledger says the secret has already been revealed."""

    code = "already_used"


class SecretExpiredError(SecretShareError):
    """The ledger expiration has passed."""

    code = "expired"


class StorageUnavailableError(SecretShareError):
    """The database could not be reached or the statement failed."""

    code = "storage_unavailable"


class DeliveryFailedError(SecretShareError):
    """An email could not be sent."""

    code = "delivery_failed"


class InvalidSecretRequestError(SecretShareError, ValueError):
    """A secret cannot be created from the given input (empty field, unknown expiration)."""

    code = "invalid_request"
