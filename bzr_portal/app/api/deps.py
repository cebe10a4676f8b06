from datetime import datetime
from typing import AsyncGenerator, Callable, Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from bzr_portal.app.core.base import utcnow
from bzr_portal.app.core.database import async_session
from bzr_portal.app.core.settings import get_settings
from bzr_portal.app.services.object_store import ObjectStore, build_object_store
from bzr_portal.app.services.referrals import ReferralService
from bzr_portal.app.services.storage_quota import StorageQuotaService

_object_store: Optional[ObjectStore] = None


# Database session per request
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        yield session


# Object store shared by the process (boto3 clients are thread-safe)
def get_object_store() -> ObjectStore:
    global _object_store
    if _object_store is None:
        _object_store = build_object_store(get_settings())
    return _object_store


def get_clock() -> Callable[[], datetime]:
    return utcnow


async def get_referral_service(
    session: AsyncSession = Depends(get_session),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> ReferralService:
    return ReferralService(session, clock=clock, app_url=get_settings().APP_URL)


async def get_storage_service(
    referrals: ReferralService = Depends(get_referral_service),
    object_store: ObjectStore = Depends(get_object_store),
) -> StorageQuotaService:
    return StorageQuotaService(referrals, object_store)
