class BaseServiceError(Exception):
    """Base exception for all service-related errors."""
    pass

class PlatformServiceError(BaseServiceError):
    """Base exception for marketplace platform errors."""
    pass

class MarketplaceAPIError(PlatformServiceError):
    """Raised when a marketplace API call fails."""

    def __init__(self, message: str, marketplace: str = None, status_code: int = None):
        super().__init__(message)
        self.marketplace = marketplace
        self.status_code = status_code

class RemoteUnavailable(MarketplaceAPIError):
    """Marketplace API is down, timed out or rate-limited. Transient."""
    pass

class AuthExpired(MarketplaceAPIError):
    """Access token rejected; recoverable through a credential refresh."""
    pass

class UnsupportedOperation(PlatformServiceError):
    """Raised when an adapter lacks a capability. Callers skip, not fail."""
    pass

class NotFoundError(BaseServiceError):
    """Base exception for local records that vanished."""
    pass

class ListingNotFoundError(NotFoundError):
    """Raised when a marketplace listing is not found."""
    pass

class AccountNotFoundError(NotFoundError):
    """Raised when a marketplace account is not found."""
    pass


class JobPayloadError(BaseServiceError):
    """Raised when a queued job carries an invalid payload."""
    pass

class TokenEncryptionError(BaseServiceError):
    """Raised when stored tokens cannot be encrypted or decrypted."""
    pass
