from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from bzr_portal.app.api.deps import get_referral_service, get_session
from bzr_portal.app.core.auth import CurrentAccount, get_current_account, require_admin
from bzr_portal.app.core.logging import get_logger
from bzr_portal.app.core.exceptions import ServiceError
from bzr_portal.app.schemas import (
    ExpiredReferralsResponse,
    MessageResponse,
    ProStatusRequest,
    ProcessReferralRequest,
    ReferralCodeResponse,
    ReferralEventResponse,
    ReferralInfo,
    ReferralInfoResponse,
)
from bzr_portal.app.services.accounts import AccountService
from bzr_portal.app.services.referrals import ReferralService

router = APIRouter()
logger = get_logger(__name__)


def _handle_service_error(e: ServiceError):
    """Convert service exceptions to HTTP exceptions."""
    raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/code", response_model=ReferralCodeResponse)
async def get_referral_code(
    account: CurrentAccount = Depends(get_current_account),
    referrals: ReferralService = Depends(get_referral_service),
):
    """Referral code and link of the caller, created on first request."""
    try:
        code = await referrals.get_or_create_code(account.id)
    except ServiceError as e:
        _handle_service_error(e)
    return ReferralCodeResponse(referral_code=code, referral_url=referrals.build_referral_url(code))


@router.get("/info", response_model=ReferralInfoResponse)
async def get_referral_info(
    account: CurrentAccount = Depends(get_current_account),
    referrals: ReferralService = Depends(get_referral_service),
):
    stats = await referrals.get_referral_stats(account.id)
    events = await referrals.list_referral_events(account.id)
    return ReferralInfoResponse(
        referral_info=ReferralInfo.model_validate(stats),
        referrals=[ReferralEventResponse.model_validate(e) for e in events],
    )


@router.post("/process", response_model=MessageResponse)
async def process_referral(
    data: ProcessReferralRequest,
    account: CurrentAccount = Depends(get_current_account),
    referrals: ReferralService = Depends(get_referral_service),
):
    """Attribute the caller's registration to a referral code."""
    ok = await referrals.register_referral(
        data.referral_code,
        account.id,
        account.is_pro,
        source=data.source,
        social_platform=data.social_platform,
        post_link=data.post_link,
    )
    if not ok:
        raise HTTPException(status_code=400, detail="Nije moguće procesirati referral")
    return MessageResponse(message="Referral uspešno procesiran")


@router.put("/pro-status", response_model=MessageResponse)
async def update_pro_status(
    data: ProStatusRequest,
    admin: CurrentAccount = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    referrals: ReferralService = Depends(get_referral_service),
):
    """Paid-status change of an account, forwarded to its referral event."""
    try:
        await AccountService(session).set_pro_status(data.account_id, data.is_pro)
    except ServiceError as e:
        _handle_service_error(e)
    await referrals.update_referral_status(data.account_id, data.is_pro)
    logger.info("Pro status changed by admin", admin_id=admin.id, target=data.account_id, is_pro=data.is_pro)
    state = "aktiviran" if data.is_pro else "deaktiviran"
    return MessageResponse(message=f"PRO status uspešno {state}")


@router.post("/check-expired", response_model=ExpiredReferralsResponse)
async def check_expired_referrals(
    admin: CurrentAccount = Depends(require_admin),
    referrals: ReferralService = Depends(get_referral_service),
):
    expired = await referrals.expire_stale_referrals()
    return ExpiredReferralsResponse(expired=expired)
