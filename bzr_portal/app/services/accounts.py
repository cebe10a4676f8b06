# bzr_portal/app/services/accounts.py
"""
Account service - local account rows and the account tier lookup.
"""
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bzr_portal.app.core.exceptions import ServiceError
from bzr_portal.app.core.logging import get_logger
from bzr_portal.app.models.account import Account

logger = get_logger(__name__)


class AccountServiceError(ServiceError):
    """Base exception for account service errors."""


class AccountNotFoundError(AccountServiceError):
    def __init__(self, account_id: str):
        super().__init__(f"Account {account_id} not found", 404)


class AccountTierLookup(Protocol):
    """Answers whether an account is on the paid tier."""

    async def is_account_pro(self, account_id: str) -> bool:
        ...


class DatabaseTierLookup:
    """Tier lookup backed by `accounts.is_pro`. Unknown accounts are free."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def is_account_pro(self, account_id: str) -> bool:
        result = await self.session.execute(
            select(Account.is_pro).where(Account.id == account_id)
        )
        return bool(result.scalar_one_or_none())


class AccountService:
    """Service class for account rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_account(self, account_id: str) -> Optional[Account]:
        return await self.session.get(Account, account_id)

    async def get_or_create(self, account_id: str, email: Optional[str] = None) -> Account:
        """
        Return the account row, creating it on first sight.

        The auth provider owns the account; this row only carries
        tier and admin flags.
        """
        account = await self.get_account(account_id)
        if account:
            if email and account.email != email:
                account.email = email
                await self.session.commit()
            return account

        account = Account(id=account_id, email=email, is_pro=False, is_admin=False)
        self.session.add(account)
        try:
            await self.session.commit()
        except IntegrityError:
            # Concurrent first request for the same account
            await self.session.rollback()
            account = await self.get_account(account_id)
            if account is None:
                raise
            return account
        logger.info("Account created", account_id=account_id)
        return account

    async def set_pro_status(self, account_id: str, is_pro: bool) -> Account:
        """
        Persist the paid-tier flag.

        Raises:
            AccountNotFoundError: If the account row doesn't exist
        """
        account = await self.get_account(account_id)
        if not account:
            raise AccountNotFoundError(account_id)
        account.is_pro = is_pro
        await self.session.commit()
        logger.info("Account tier changed", account_id=account_id, is_pro=is_pro)
        return account
