# bzr_portal/app/services/referrals.py
"""
Referral program: code ledger and storage-bonus accrual.

Every referral event carries its own reward and expiry. The bonus an
account currently enjoys is always derived from its events
(`recalculate_active_space`); the `active_bonus_bytes` column on the code
row is only a cache of that derivation.
"""
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from sqlalchemy import and_, case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bzr_portal.app.core.base import utcnow
from bzr_portal.app.core.constants import (
    DEFAULT_REFERRAL_SOURCE,
    REFERRAL_CODE_ALPHABET,
    REFERRAL_CODE_LENGTH,
    REFERRAL_CODE_MAX_ATTEMPTS,
    REFERRAL_SOURCES,
    REFERRAL_VALIDITY_DAYS,
    max_referral_bonus,
    referral_reward,
    tier_name,
)
from bzr_portal.app.core.exceptions import ServiceError
from bzr_portal.app.core.logging import get_logger
from bzr_portal.app.core.metrics import (
    referral_rejections_total,
    referrals_expired_total,
    referrals_registered_total,
)
from bzr_portal.app.models.referral import ReferralCode, ReferralEvent
from bzr_portal.app.services.accounts import AccountTierLookup, DatabaseTierLookup

logger = get_logger(__name__)

REFERRAL_VALIDITY = timedelta(days=REFERRAL_VALIDITY_DAYS)


class ReferralServiceError(ServiceError):
    """Base exception for referral service errors."""


class ReferralCodeGenerationError(ReferralServiceError):
    def __init__(self, account_id: str):
        super().__init__(f"Could not allocate a unique referral code for {account_id}", 500)


@dataclass(slots=True)
class ReferralStats:
    """Read view of an account's referral standing."""

    code: Optional[str] = None
    referral_url: Optional[str] = None
    total_referrals: int = 0
    total_pro_referrals: int = 0
    earned_bonus_bytes: int = 0
    active_bonus_bytes: int = 0
    created_at: Optional[datetime] = None


def generate_referral_code() -> str:
    return "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(REFERRAL_CODE_LENGTH))


def normalize_source(source: Optional[str]) -> str:
    if not source:
        return DEFAULT_REFERRAL_SOURCE
    return source if source in REFERRAL_SOURCES else "unknown"


class ReferralService:
    """Service class for the referral ledger and bonus accrual."""

    def __init__(
        self,
        session: AsyncSession,
        tier_lookup: Optional[AccountTierLookup] = None,
        clock: Callable[[], datetime] = utcnow,
        app_url: str = "https://bzrportal.com",
    ):
        self.session = session
        self.tier_lookup = tier_lookup or DatabaseTierLookup(session)
        self.clock = clock
        self.app_url = app_url.rstrip("/")

    # ----- Ledger -----

    async def _get_code_row(self, account_id: str, for_update: bool = False) -> Optional[ReferralCode]:
        stmt = select(ReferralCode).where(ReferralCode.owner_account_id == account_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _get_code_row_by_code(self, code: str, for_update: bool = False) -> Optional[ReferralCode]:
        stmt = select(ReferralCode).where(ReferralCode.code == code)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create_code(self, account_id: str) -> str:
        """
        Return the account's referral code, allocating one on first call.

        Idempotent: an account keeps the same code forever.

        Raises:
            ReferralCodeGenerationError: If no free code was found
        """
        existing = await self._get_code_row(account_id)
        if existing:
            return existing.code

        for _ in range(REFERRAL_CODE_MAX_ATTEMPTS):
            candidate = generate_referral_code()
            if await self._get_code_row_by_code(candidate):
                continue

            now = self.clock()
            row = ReferralCode(
                code=candidate,
                owner_account_id=account_id,
                total_referral_count=0,
                total_pro_referral_count=0,
                earned_bonus_bytes=0,
                active_bonus_bytes=0,
                created_at=now,
                updated_at=now,
            )
            self.session.add(row)
            try:
                await self.session.commit()
            except IntegrityError:
                await self.session.rollback()
                # Either another request created this account's code first,
                # or the candidate was taken between check and insert.
                existing = await self._get_code_row(account_id)
                if existing:
                    return existing.code
                continue

            logger.info("Referral code created", account_id=account_id, code=candidate)
            return candidate

        raise ReferralCodeGenerationError(account_id)

    async def get_code_info(self, account_id: str) -> Optional[ReferralCode]:
        """Code row with a freshly recomputed active bonus, or None."""
        row = await self._get_code_row(account_id)
        if row is None:
            return None
        await self.recalculate_active_space(account_id)
        return row

    async def find_owner_by_code(self, code: str) -> Optional[str]:
        row = await self._get_code_row_by_code(code)
        return row.owner_account_id if row else None

    async def list_referral_events(self, account_id: str) -> List[ReferralEvent]:
        """Events where the account is the referrer, newest first."""
        result = await self.session.execute(
            select(ReferralEvent)
            .where(ReferralEvent.referrer_account_id == account_id)
            .order_by(ReferralEvent.created_at.desc(), ReferralEvent.id.desc())
        )
        return list(result.scalars().all())

    def build_referral_url(self, code: str) -> str:
        return f"{self.app_url}/auth?ref={code}"

    async def get_referral_stats(self, account_id: str) -> ReferralStats:
        info = await self.get_code_info(account_id)
        if info is None:
            return ReferralStats()

        first = await self.session.execute(
            select(func.min(ReferralEvent.created_at))
            .where(ReferralEvent.referrer_account_id == account_id)
        )
        first_referral_at = first.scalar_one_or_none()

        return ReferralStats(
            code=info.code,
            referral_url=self.build_referral_url(info.code),
            total_referrals=info.total_referral_count,
            total_pro_referrals=info.total_pro_referral_count,
            earned_bonus_bytes=info.earned_bonus_bytes,
            active_bonus_bytes=info.active_bonus_bytes,
            created_at=first_referral_at or info.created_at,
        )

    # ----- Accrual -----

    async def _bonus_cap(self, account_id: str) -> int:
        return max_referral_bonus(await self.tier_lookup.is_account_pro(account_id))

    def _reject(self, reason: str, **context) -> bool:
        referral_rejections_total.labels(reason=reason).inc()
        logger.info("Referral rejected", reason=reason, **context)
        return False

    async def register_referral(
        self,
        code: str,
        referred_account_id: str,
        is_pro: bool,
        source: Optional[str] = DEFAULT_REFERRAL_SOURCE,
        social_platform: Optional[str] = None,
        post_link: Optional[str] = None,
    ) -> bool:
        """
        Attribute a new registration to a referral code and accrue the reward.

        Returns False, leaving all state untouched, when the code is unknown,
        when the account refers itself or when the referred account was
        already referred once.
        """
        row = await self._get_code_row_by_code(code)
        if row is None:
            return self._reject("unknown_code", code=code)
        if row.owner_account_id == referred_account_id:
            return self._reject("self_referral", code=code, referred_account_id=referred_account_id)

        already = await self.session.execute(
            select(ReferralEvent.id).where(ReferralEvent.referred_account_id == referred_account_id)
        )
        if already.scalar_one_or_none() is not None:
            return self._reject("already_referred", code=code, referred_account_id=referred_account_id)

        # Serialize accrual on this code: the cap check below reads the counters
        row = await self._get_code_row_by_code(code, for_update=True)
        referrer_id = row.owner_account_id
        cap = await self._bonus_cap(referrer_id)
        reward = referral_reward(is_pro)
        now = self.clock()

        self.session.add(ReferralEvent(
            referrer_account_id=referrer_id,
            referred_account_id=referred_account_id,
            used_code=code,
            is_pro_at_registration=is_pro,
            reward_size_bytes=reward,
            created_at=now,
            expires_at=now + REFERRAL_VALIDITY,
            is_active=True,
            source=normalize_source(source),
            social_platform=social_platform,
            post_link=post_link,
        ))
        row.total_referral_count += 1
        if is_pro:
            row.total_pro_referral_count += 1
        row.earned_bonus_bytes = min(row.earned_bonus_bytes + reward, cap)
        row.active_bonus_bytes = min(row.active_bonus_bytes + reward, cap)
        row.updated_at = now

        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            return self._reject("already_referred", code=code, referred_account_id=referred_account_id)

        referrals_registered_total.labels(tier=tier_name(is_pro)).inc()
        logger.info(
            "Referral registered",
            referrer_account_id=referrer_id,
            referred_account_id=referred_account_id,
            reward_bytes=reward,
            earned_bonus_bytes=row.earned_bonus_bytes,
        )
        return True

    async def _bonus_totals(self, account_id: str, now: datetime) -> Tuple[int, int]:
        """(active, earned) bonus of an account, both clamped to its current cap."""
        counts = and_(ReferralEvent.is_active.is_(True), ReferralEvent.expires_at > now)
        result = await self.session.execute(
            select(
                func.coalesce(func.sum(case((counts, ReferralEvent.reward_size_bytes), else_=0)), 0),
                func.coalesce(func.sum(ReferralEvent.reward_size_bytes), 0),
            ).where(ReferralEvent.referrer_account_id == account_id)
        )
        active_total, earned_total = result.one()
        cap = await self._bonus_cap(account_id)
        earned = min(int(earned_total), cap)
        return min(int(active_total), earned), earned

    async def _store_active_space(self, account_id: str, now: datetime) -> int:
        """
        Recompute the active bonus and write it to the code row (no commit).

        The earned bonus is re-derived against the current cap as well, so a
        tier change moves it in either direction and active never exceeds it.
        """
        active, earned = await self._bonus_totals(account_id, now)
        row = await self._get_code_row(account_id)
        if row is not None and (row.active_bonus_bytes, row.earned_bonus_bytes) != (active, earned):
            row.active_bonus_bytes = active
            row.earned_bonus_bytes = earned
            row.updated_at = now
        return active

    async def recalculate_active_space(self, account_id: str) -> int:
        """
        Authoritative active bonus of an account:
        min(cap, sum of rewards of events that are active and not expired).
        """
        active = await self._store_active_space(account_id, self.clock())
        if self.session.dirty:
            await self.session.commit()
        return active

    async def update_referral_status(self, referred_account_id: str, is_pro_active: bool) -> None:
        """
        Paid-status transition of a referred account.

        Only pro-flagged events react: activation renews the reward window
        (also reviving an expired event), deactivation lapses it at once.
        """
        result = await self.session.execute(
            select(ReferralEvent).where(
                ReferralEvent.referred_account_id == referred_account_id,
                ReferralEvent.is_pro_at_registration.is_(True),
            )
        )
        event = result.scalar_one_or_none()
        if event is None:
            logger.debug("No pro referral for account", referred_account_id=referred_account_id)
            return

        await self._get_code_row(event.referrer_account_id, for_update=True)
        now = self.clock()
        if is_pro_active:
            event.expires_at = now + REFERRAL_VALIDITY
            event.is_active = True
        else:
            event.is_active = False

        active = await self._store_active_space(event.referrer_account_id, now)
        await self.session.commit()
        logger.info(
            "Referral status updated",
            referrer_account_id=event.referrer_account_id,
            referred_account_id=referred_account_id,
            is_pro_active=is_pro_active,
            active_bonus_bytes=active,
        )

    async def expire_stale_referrals(self) -> int:
        """Deactivate events past their expiry and refresh affected referrers.

        Returns the number of events deactivated.
        """
        now = self.clock()
        result = await self.session.execute(
            select(ReferralEvent).where(
                ReferralEvent.is_active.is_(True),
                ReferralEvent.expires_at <= now,
            )
        )
        events = list(result.scalars().all())
        if not events:
            return 0

        referrers = set()
        for event in events:
            event.is_active = False
            referrers.add(event.referrer_account_id)

        for account_id in sorted(referrers):
            await self._store_active_space(account_id, now)
        await self.session.commit()

        referrals_expired_total.inc(len(events))
        logger.info("Expired referrals deactivated", count=len(events), referrers=len(referrers))
        return len(events)
