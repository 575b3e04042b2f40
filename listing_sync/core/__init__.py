"""
Core module exports.
"""
from .enums import (
    MarketplaceType,
    ListingStatus,
    ItemStatus,
    AccountStatus,
    SyncOutcome,
    SyncJobStatus,
    SyncJobType,
)

from .exceptions import (
    BaseServiceError,
    PlatformServiceError,
    MarketplaceAPIError,
    RemoteUnavailable,
    AuthExpired,
    UnsupportedOperation,
    NotFoundError,
    ListingNotFoundError,
    AccountNotFoundError,
    JobPayloadError,
    TokenEncryptionError,
)
