from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from bzr_portal.app.core.constants import REFERRAL_SOURCES


# --- Referrals ---
class ReferralCodeResponse(BaseModel):
    success: bool = True
    referral_code: str
    referral_url: str


class ReferralInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    code: Optional[str] = None
    referral_url: Optional[str] = None
    total_referrals: int = 0
    total_pro_referrals: int = 0
    earned_bonus_bytes: int = 0
    active_bonus_bytes: int = 0
    created_at: Optional[datetime] = None


class ReferralEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    referred_account_id: str
    used_code: str
    is_pro_at_registration: bool
    reward_size_bytes: int
    created_at: datetime
    expires_at: datetime
    is_active: bool
    source: str
    social_platform: Optional[str] = None
    post_link: Optional[str] = None


class ReferralInfoResponse(BaseModel):
    success: bool = True
    referral_info: ReferralInfo
    referrals: List[ReferralEventResponse]


class ProcessReferralRequest(BaseModel):
    referral_code: str = Field(..., min_length=1, max_length=16)
    source: Optional[str] = None
    social_platform: Optional[str] = Field(default=None, max_length=64)
    post_link: Optional[str] = Field(default=None, max_length=2048)

    @field_validator("referral_code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("source")
    @classmethod
    def validate_source(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in REFERRAL_SOURCES:
            raise ValueError(f"source must be one of {REFERRAL_SOURCES}")
        return v


class ProStatusRequest(BaseModel):
    account_id: str = Field(..., min_length=1, max_length=64)
    is_pro: bool


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class ExpiredReferralsResponse(BaseModel):
    success: bool = True
    expired: int


# --- Storage ---
class StorageInfoResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_size: int
    used_size: int
    remaining_size: int
    used_percentage: float
    quota: int
    referral_bonus: int
    user_type: str


class DocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    key: str
    size_bytes: int


class UploadResponse(BaseModel):
    success: bool = True
    key: str
    size_bytes: int
