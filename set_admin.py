import argparse
import asyncio

from bzr_portal.app.core.database import async_session, engine
from bzr_portal.app.models.account import Account


async def set_admin(account_id: str, is_admin: bool = True):
    async with async_session() as session:
        account = await session.get(Account, account_id)

        if account:
            account.is_admin = is_admin
            print(f"Account {account_id}: is_admin={is_admin}")
        else:
            # Account never signed in yet, create the row up front
            session.add(Account(id=account_id, is_pro=False, is_admin=is_admin))
            print(f"Account {account_id} created with is_admin={is_admin}")

        await session.commit()
    await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Grant or revoke portal admin rights")
    parser.add_argument("account_id", help="Supabase user id")
    parser.add_argument("--revoke", action="store_true", help="Remove admin rights instead")
    args = parser.parse_args()
    asyncio.run(set_admin(args.account_id, is_admin=not args.revoke))
