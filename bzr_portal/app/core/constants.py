"""
Shared constants for the storage and referral subsystem.
"""
import string

MIB = 1024 * 1024
GIB = 1024 * MIB

# ---------------------------------------------------------------------------
# Base storage quota per account tier
# ---------------------------------------------------------------------------
STORAGE_QUOTA = {
    "free": 50 * MIB,
    "pro": 1 * GIB,
}

# ---------------------------------------------------------------------------
# Referral rewards
# ---------------------------------------------------------------------------
STANDARD_REFERRAL_BONUS = 50 * MIB
PRO_REFERRAL_BONUS = 100 * MIB

# Cap on accumulated referral bonus, keyed by the referrer's tier
MAX_REFERRAL_BONUS = {
    "free": 2 * GIB,
    "pro": 3 * GIB,
}

REFERRAL_VALIDITY_DAYS = 365

REFERRAL_CODE_LENGTH = 8
REFERRAL_CODE_ALPHABET = string.ascii_uppercase + string.digits
REFERRAL_CODE_MAX_ATTEMPTS = 10

REFERRAL_SOURCES = ("blog_post", "social_comment", "direct_link", "unknown")
DEFAULT_REFERRAL_SOURCE = "direct_link"

# ---------------------------------------------------------------------------
# User document storage
# ---------------------------------------------------------------------------
USER_FOLDERS = [
    "SISTEMATIZACIJA",
    "SISTEMATIZACIJA SA IMENIMA",
    "OPIS POSLOVA",
    "UGOVORI",
    "OBUKE",
]

ALLOWED_UPLOAD_EXTENSIONS = (
    ".xls", ".xlsx", ".doc", ".docx", ".odt", ".ods",
    ".pdf", ".jpg", ".jpeg", ".png", ".csv", ".bmp",
)


def tier_name(is_pro: bool) -> str:
    return "pro" if is_pro else "free"


def base_quota(is_pro: bool) -> int:
    """Storage granted purely by account tier."""
    return STORAGE_QUOTA[tier_name(is_pro)]


def max_referral_bonus(is_pro: bool) -> int:
    return MAX_REFERRAL_BONUS[tier_name(is_pro)]


def referral_reward(is_pro: bool) -> int:
    """Reward size fixed at registration time for the referred account."""
    return PRO_REFERRAL_BONUS if is_pro else STANDARD_REFERRAL_BONUS
