"""Referral program models: referral_codes (one per referrer) and referral_events."""
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from bzr_portal.app.core.base import Base, utcnow


class ReferralCode(Base):
    """Referral code of an account plus its accrual counters."""
    __tablename__ = 'referral_codes'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)
    owner_account_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    total_referral_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_pro_referral_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Capped at the owner's tier maximum
    earned_bonus_bytes: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    # Cache of recalculate_active_space(); never trusted without recomputation
    active_bonus_bytes: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class ReferralEvent(Base):
    """One successful registration attributed to a referral code."""
    __tablename__ = 'referral_events'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    referrer_account_id: Mapped[str] = mapped_column(String(64), nullable=False)
    # An account can be referred only once
    referred_account_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    used_code: Mapped[str] = mapped_column(String(16), nullable=False)

    is_pro_at_registration: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reward_size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Provenance, informational only
    source: Mapped[str] = mapped_column(String(32), default='direct_link', nullable=False)
    social_platform: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    post_link: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)

    __table_args__ = (
        Index('ix_referral_events_referrer_active', 'referrer_account_id', 'is_active', 'expires_at'),
    )

    def counts_at(self, now: datetime) -> bool:
        """True while the event contributes to the referrer's active bonus."""
        return self.is_active and self.expires_at > now
