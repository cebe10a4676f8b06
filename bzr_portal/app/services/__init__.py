# bzr_portal/app/services/__init__.py
"""
Services layer for business logic.
Keeps API endpoints thin and business logic testable and reusable.
"""

from bzr_portal.app.services.accounts import (
    AccountService,
    AccountServiceError,
    AccountNotFoundError,
    AccountTierLookup,
    DatabaseTierLookup,
)
from bzr_portal.app.services.referrals import (
    ReferralService,
    ReferralServiceError,
    ReferralCodeGenerationError,
    ReferralStats,
)
from bzr_portal.app.services.object_store import (
    ObjectStore,
    StoredObject,
    S3ObjectStore,
    LocalObjectStore,
    StorageServiceError,
    StorageUnavailableError,
    ObjectNotFoundError,
    build_object_store,
)
from bzr_portal.app.services.storage_quota import (
    StorageQuotaService,
    StorageInfo,
    QuotaExceededError,
    InvalidFolderError,
    InvalidFileTypeError,
    InvalidDocumentKeyError,
)

__all__ = [
    # Accounts
    "AccountService",
    "AccountServiceError",
    "AccountNotFoundError",
    "AccountTierLookup",
    "DatabaseTierLookup",
    # Referrals
    "ReferralService",
    "ReferralServiceError",
    "ReferralCodeGenerationError",
    "ReferralStats",
    # Object store
    "ObjectStore",
    "StoredObject",
    "S3ObjectStore",
    "LocalObjectStore",
    "StorageServiceError",
    "StorageUnavailableError",
    "ObjectNotFoundError",
    "build_object_store",
    # Storage quota
    "StorageQuotaService",
    "StorageInfo",
    "QuotaExceededError",
    "InvalidFolderError",
    "InvalidFileTypeError",
    "InvalidDocumentKeyError",
]
