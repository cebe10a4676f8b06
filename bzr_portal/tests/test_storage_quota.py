"""
Tests for storage accounting and quota-checked documents.
"""
import asyncio

import pytest

from bzr_portal.app.core.constants import GIB, MIB, STANDARD_REFERRAL_BONUS
from bzr_portal.app.services.object_store import ObjectNotFoundError, StorageUnavailableError
from bzr_portal.app.services.referrals import ReferralService
from bzr_portal.app.services.storage_quota import (
    InvalidDocumentKeyError,
    InvalidFileTypeError,
    InvalidFolderError,
    QuotaExceededError,
    StorageQuotaService,
    is_allowed_file_type,
)

ACCOUNT = "acc-1"


# ============================================
# USAGE
# ============================================

@pytest.mark.asyncio
async def test_used_bytes_walks_every_folder(storage_service: StorageQuotaService, object_store):
    object_store.add("acc-1/root.pdf", 10)
    object_store.add("acc-1/UGOVORI/a.pdf", 20)
    object_store.add("acc-1/UGOVORI/2024/b.pdf", 30)
    object_store.add("acc-1/OBUKE/deep/er/c.docx", 40)
    object_store.add("acc-2/UGOVORI/other.pdf", 1000)

    assert await storage_service.calculate_used_bytes(ACCOUNT) == 100
    assert "acc-1/OBUKE/deep/er/" in object_store.list_calls


@pytest.mark.asyncio
async def test_used_bytes_empty_account(storage_service: StorageQuotaService):
    assert await storage_service.calculate_used_bytes(ACCOUNT) == 0


@pytest.mark.asyncio
async def test_listing_failure_is_not_zero_usage(storage_service: StorageQuotaService, object_store):
    object_store.add("acc-1/UGOVORI/a.pdf", 20)
    object_store.fail_operations.add("list")

    with pytest.raises(StorageUnavailableError):
        await storage_service.calculate_used_bytes(ACCOUNT)
    with pytest.raises(StorageUnavailableError):
        await storage_service.has_enough_space(ACCOUNT, 1, False)


# ============================================
# ALLOWANCE
# ============================================

@pytest.mark.asyncio
async def test_total_storage_base_quota(storage_service: StorageQuotaService):
    assert await storage_service.get_total_available_storage(ACCOUNT, False) == 50 * MIB
    assert await storage_service.get_total_available_storage(ACCOUNT, True) == 1 * GIB


@pytest.mark.asyncio
async def test_has_enough_space_boundary(storage_service: StorageQuotaService, object_store):
    object_store.add("acc-1/UGOVORI/a.pdf", 10 * MIB)
    remaining = 40 * MIB

    assert await storage_service.has_enough_space(ACCOUNT, remaining, False) is True
    assert await storage_service.has_enough_space(ACCOUNT, remaining + 1, False) is False


@pytest.mark.asyncio
async def test_referral_bonus_extends_allowance(
    storage_service: StorageQuotaService,
    referral_service: ReferralService,
    object_store,
):
    object_store.add("acc-1/UGOVORI/a.pdf", 40 * MIB)
    code = await referral_service.get_or_create_code(ACCOUNT)
    assert await referral_service.register_referral(code, "friend", False) is True

    assert await storage_service.get_total_available_storage(ACCOUNT, False) == 100 * MIB
    assert await storage_service.has_enough_space(ACCOUNT, 55 * MIB, False) is True
    assert await storage_service.has_enough_space(ACCOUNT, 65 * MIB, False) is False


@pytest.mark.asyncio
async def test_expired_bonus_shrinks_allowance(
    storage_service: StorageQuotaService,
    referral_service: ReferralService,
    clock,
):
    code = await referral_service.get_or_create_code(ACCOUNT)
    await referral_service.register_referral(code, "friend", False)
    clock.advance(days=366)

    assert await storage_service.get_total_available_storage(ACCOUNT, False) == 50 * MIB


@pytest.mark.asyncio
async def test_storage_info(
    storage_service: StorageQuotaService,
    referral_service: ReferralService,
    object_store,
):
    object_store.add("acc-1/UGOVORI/a.pdf", 25 * MIB)
    code = await referral_service.get_or_create_code(ACCOUNT)
    await referral_service.register_referral(code, "friend", False)

    info = await storage_service.get_user_storage_info(ACCOUNT, False)
    assert info.total_size == 100 * MIB
    assert info.used_size == 25 * MIB
    assert info.remaining_size == 75 * MIB
    assert info.used_percentage == pytest.approx(25.0)
    assert info.quota == 50 * MIB
    assert info.referral_bonus == STANDARD_REFERRAL_BONUS
    assert info.user_type == "free"


@pytest.mark.asyncio
async def test_storage_info_over_allowance(storage_service: StorageQuotaService, object_store):
    object_store.add("acc-1/UGOVORI/a.pdf", 60 * MIB)

    info = await storage_service.get_user_storage_info(ACCOUNT, False)
    assert info.remaining_size == 0
    assert info.used_percentage == pytest.approx(120.0)


# ============================================
# DOCUMENTS
# ============================================

@pytest.mark.asyncio
async def test_upload_document(storage_service: StorageQuotaService, object_store):
    key = await storage_service.upload_document(
        ACCOUNT, "UGOVORI", "ugovor.pdf", b"%PDF-1.4", "application/pdf", False,
    )
    assert key == "acc-1/UGOVORI/ugovor.pdf"
    assert object_store.objects[key] == b"%PDF-1.4"


@pytest.mark.asyncio
async def test_upload_strips_client_path(storage_service: StorageQuotaService, object_store):
    key = await storage_service.upload_document(
        ACCOUNT, "OBUKE", "C:\\Users\\me\\obuka.docx", b"doc", "application/msword", False,
    )
    assert key == "acc-1/OBUKE/obuka.docx"


@pytest.mark.asyncio
async def test_upload_rejects_unknown_folder(storage_service: StorageQuotaService):
    with pytest.raises(InvalidFolderError):
        await storage_service.upload_document(ACCOUNT, "../acc-2", "a.pdf", b"x", "application/pdf", False)


@pytest.mark.asyncio
async def test_upload_rejects_file_type(storage_service: StorageQuotaService, object_store):
    with pytest.raises(InvalidFileTypeError):
        await storage_service.upload_document(ACCOUNT, "UGOVORI", "run.exe", b"x", "application/octet-stream", False)
    assert object_store.objects == {}


@pytest.mark.asyncio
async def test_upload_rejected_over_quota(storage_service: StorageQuotaService, object_store):
    object_store.add("acc-1/UGOVORI/a.pdf", 45 * MIB)
    body = b"x" * (5 * MIB + 1)

    with pytest.raises(QuotaExceededError) as exc_info:
        await storage_service.upload_document(ACCOUNT, "UGOVORI", "b.pdf", body, "application/pdf", False)
    assert exc_info.value.status_code == 413
    assert exc_info.value.total == 50 * MIB
    assert "acc-1/UGOVORI/b.pdf" not in object_store.objects


@pytest.mark.asyncio
async def test_upload_fills_quota_exactly(storage_service: StorageQuotaService, object_store):
    object_store.add("acc-1/UGOVORI/a.pdf", 45 * MIB)
    body = b"x" * (5 * MIB)

    await storage_service.upload_document(ACCOUNT, "UGOVORI", "b.pdf", body, "application/pdf", False)
    assert await storage_service.calculate_used_bytes(ACCOUNT) == 50 * MIB


@pytest.mark.asyncio
async def test_concurrent_uploads_cannot_overshoot_quota(storage_service: StorageQuotaService, object_store):
    body = b"x" * (30 * MIB)

    results = await asyncio.gather(
        storage_service.upload_document(ACCOUNT, "UGOVORI", "a.pdf", body, "application/pdf", False),
        storage_service.upload_document(ACCOUNT, "OBUKE", "b.pdf", body, "application/pdf", False),
        return_exceptions=True,
    )

    rejected = [r for r in results if isinstance(r, QuotaExceededError)]
    stored = [r for r in results if isinstance(r, str)]
    assert len(rejected) == 1
    assert len(stored) == 1
    assert await storage_service.calculate_used_bytes(ACCOUNT) == 30 * MIB


@pytest.mark.asyncio
async def test_upload_fails_when_store_unavailable(storage_service: StorageQuotaService, object_store):
    object_store.fail_operations.add("list")
    with pytest.raises(StorageUnavailableError) as exc_info:
        await storage_service.upload_document(ACCOUNT, "UGOVORI", "a.pdf", b"x", "application/pdf", False)
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_list_documents(storage_service: StorageQuotaService, object_store):
    object_store.add("acc-1/UGOVORI/a.pdf", 1)
    object_store.add("acc-1/OBUKE/b.pdf", 2)
    object_store.add("acc-2/UGOVORI/c.pdf", 3)

    everything = await storage_service.list_documents(ACCOUNT)
    assert sorted(f.key for f in everything) == ["acc-1/OBUKE/b.pdf", "acc-1/UGOVORI/a.pdf"]

    contracts = await storage_service.list_documents(ACCOUNT, "UGOVORI")
    assert [f.key for f in contracts] == ["acc-1/UGOVORI/a.pdf"]

    with pytest.raises(InvalidFolderError):
        await storage_service.list_documents(ACCOUNT, "SECRET")


@pytest.mark.asyncio
async def test_download_and_delete(storage_service: StorageQuotaService, object_store):
    object_store.objects["acc-1/UGOVORI/a.pdf"] = b"content"

    assert await storage_service.download_document(ACCOUNT, "UGOVORI/a.pdf") == b"content"

    await storage_service.delete_document(ACCOUNT, "UGOVORI/a.pdf")
    assert object_store.objects == {}
    with pytest.raises(ObjectNotFoundError):
        await storage_service.download_document(ACCOUNT, "UGOVORI/a.pdf")


@pytest.mark.asyncio
@pytest.mark.parametrize("key", ["", "/acc-2/a.pdf", "../acc-2/a.pdf", "UGOVORI/../../x", "UGOVORI//a.pdf"])
async def test_document_key_cannot_escape_account(storage_service: StorageQuotaService, key):
    with pytest.raises(InvalidDocumentKeyError):
        await storage_service.download_document(ACCOUNT, key)


def test_allowed_file_types():
    assert is_allowed_file_type("Ugovor.PDF")
    assert is_allowed_file_type("tabela.xlsx")
    assert not is_allowed_file_type("script.sh")
    assert not is_allowed_file_type("noextension")
