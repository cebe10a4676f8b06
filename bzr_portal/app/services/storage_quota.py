# bzr_portal/app/services/storage_quota.py
"""
Storage quota service: how much an account may store and whether a new
upload fits.

Allowance = base quota of the tier + active referral bonus.
Usage = sum of object sizes under "<account_id>/" in the object store,
walked folder by folder.
"""
import asyncio
import posixpath
import weakref
from dataclasses import dataclass
from typing import List, Optional

from bzr_portal.app.core.constants import (
    ALLOWED_UPLOAD_EXTENSIONS,
    USER_FOLDERS,
    base_quota,
    tier_name,
)
from bzr_portal.app.core.logging import get_logger
from bzr_portal.app.core.metrics import uploads_rejected_total, uploads_total
from bzr_portal.app.services.object_store import ObjectStore, StorageServiceError, StoredObject
from bzr_portal.app.services.referrals import ReferralService

logger = get_logger(__name__)


class QuotaExceededError(StorageServiceError):
    def __init__(self, used: int, incoming: int, total: int):
        self.used = used
        self.incoming = incoming
        self.total = total
        super().__init__("Nemate dovoljno prostora za skladištenje ovog fajla", 413)


class InvalidFolderError(StorageServiceError):
    def __init__(self, folder: str):
        super().__init__(f"Nepoznat folder: {folder}", 400)


class InvalidFileTypeError(StorageServiceError):
    def __init__(self, filename: str):
        super().__init__(f"Tip fajla nije dozvoljen: {filename}", 400)


class InvalidDocumentKeyError(StorageServiceError):
    def __init__(self, key: str):
        super().__init__(f"Neispravna putanja dokumenta: {key}", 400)


@dataclass(slots=True)
class StorageInfo:
    total_size: int
    used_size: int
    remaining_size: int
    used_percentage: float
    quota: int
    referral_bonus: int
    user_type: str


def account_prefix(account_id: str) -> str:
    return f"{account_id}/"


def is_allowed_file_type(filename: str) -> bool:
    return posixpath.splitext(filename.lower())[1] in ALLOWED_UPLOAD_EXTENSIONS


class StorageQuotaService:
    """Service class for storage accounting and quota-checked document storage."""

    # One lock per account for check-then-upload; entries vanish when unused
    _upload_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def __init__(self, referrals: ReferralService, object_store: ObjectStore):
        self.referrals = referrals
        self.object_store = object_store

    @classmethod
    def _lock_for(cls, account_id: str) -> asyncio.Lock:
        lock = cls._upload_locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            cls._upload_locks[account_id] = lock
        return lock

    async def _walk_files(self, prefix: str) -> List[StoredObject]:
        """All files under prefix, depth-first through every sub-folder."""
        files: List[StoredObject] = []
        for item in await self.object_store.list_objects(prefix):
            if item.is_folder:
                if item.key != prefix:
                    files.extend(await self._walk_files(item.key))
            else:
                files.append(item)
        return files

    async def calculate_used_bytes(self, account_id: str) -> int:
        """
        Bytes currently stored by the account.

        Raises:
            StorageUnavailableError: If the store listing fails
        """
        files = await self._walk_files(account_prefix(account_id))
        return sum(f.size_bytes for f in files)

    async def get_total_available_storage(self, account_id: str, is_pro: bool) -> int:
        return base_quota(is_pro) + await self.referrals.recalculate_active_space(account_id)

    async def has_enough_space(self, account_id: str, file_bytes: int, is_pro: bool) -> bool:
        used = await self.calculate_used_bytes(account_id)
        total = await self.get_total_available_storage(account_id, is_pro)
        return used + file_bytes <= total

    async def get_user_storage_info(self, account_id: str, is_pro: bool) -> StorageInfo:
        used = await self.calculate_used_bytes(account_id)
        bonus = await self.referrals.recalculate_active_space(account_id)
        quota = base_quota(is_pro)
        total = quota + bonus
        return StorageInfo(
            total_size=total,
            used_size=used,
            remaining_size=max(0, total - used),
            used_percentage=used / total * 100,
            quota=quota,
            referral_bonus=bonus,
            user_type=tier_name(is_pro),
        )

    # ----- User documents -----

    def _document_key(self, account_id: str, key: str) -> str:
        parts = key.split("/")
        if not key or key.startswith("/") or any(p in ("", ".", "..") for p in parts):
            raise InvalidDocumentKeyError(key)
        return account_prefix(account_id) + key

    async def upload_document(
        self,
        account_id: str,
        folder: str,
        filename: str,
        body: bytes,
        content_type: str,
        is_pro: bool,
    ) -> str:
        """
        Store a document under "<account>/<folder>/<filename>" if it fits
        the account's allowance.

        Returns:
            The object key

        Raises:
            InvalidFolderError, InvalidFileTypeError, QuotaExceededError,
            StorageUnavailableError
        """
        if folder not in USER_FOLDERS:
            uploads_rejected_total.labels(reason="folder").inc()
            raise InvalidFolderError(folder)
        name = posixpath.basename(filename.replace("\\", "/"))
        if not name or not is_allowed_file_type(name):
            uploads_rejected_total.labels(reason="file_type").inc()
            raise InvalidFileTypeError(filename)

        key = f"{account_prefix(account_id)}{folder}/{name}"
        size = len(body)

        async with self._lock_for(account_id):
            used = await self.calculate_used_bytes(account_id)
            total = await self.get_total_available_storage(account_id, is_pro)
            if used + size > total:
                uploads_rejected_total.labels(reason="quota").inc()
                logger.info(
                    "Upload rejected: quota exceeded",
                    account_id=account_id, used=used, incoming=size, total=total,
                )
                raise QuotaExceededError(used, size, total)
            await self.object_store.put_object(key, body, content_type)

        uploads_total.inc()
        logger.info("Document uploaded", account_id=account_id, key=key, size=size)
        return key

    async def list_documents(self, account_id: str, folder: Optional[str] = None) -> List[StoredObject]:
        if folder is not None and folder not in USER_FOLDERS:
            raise InvalidFolderError(folder)
        prefix = account_prefix(account_id)
        if folder:
            prefix = f"{prefix}{folder}/"
        return await self._walk_files(prefix)

    async def download_document(self, account_id: str, key: str) -> bytes:
        return await self.object_store.get_object(self._document_key(account_id, key))

    async def delete_document(self, account_id: str, key: str) -> None:
        full_key = self._document_key(account_id, key)
        await self.object_store.delete_object(full_key)
        logger.info("Document deleted", account_id=account_id, key=full_key)
