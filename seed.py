"""Seed script — wipe all data and create fresh accounts ready for testing.

Usage:
    python seed.py

Prints a bearer token for each account so the API can be called directly.
"""
import asyncio

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from otpdesk.db.database import engine, async_session, init_db
from otpdesk.models.account import Account, Role
from otpdesk.services.auth_service import mint_token
from otpdesk.services.ledger_service import LedgerService


# Test accounts to create
TEST_ACCOUNTS = [
    {
        'id': 'admin-1',
        'email': 'admin@example.com',
        'first_name': 'Ada',
        'last_name': 'Admin',
        'role': Role.ADMIN.value,
        'deposit': 0,
    },
    {
        'id': 'user-alice',
        'email': 'alice@example.com',
        'first_name': 'Alice',
        'last_name': 'Renter',
        'role': Role.USER.value,
        'deposit': 5_000,
    },
    {
        'id': 'user-bob',
        'email': 'bob@example.com',
        'first_name': 'Bob',
        'last_name': 'Renter',
        'role': Role.USER.value,
        'deposit': 500,
    },
]


async def wipe_all(db: AsyncSession):
    """Delete all rows in dependency-safe order."""
    for table in ['messages', 'transactions', 'rentals', 'accounts']:
        await db.execute(text(f'DELETE FROM {table}'))
    await db.commit()
    print('✓ All tables wiped')


async def create_accounts(db: AsyncSession):
    """Create accounts; opening balances go through the ledger."""
    ledger = LedgerService(db)
    for a in TEST_ACCOUNTS:
        account = Account(
            id=a['id'],
            email=a['email'],
            first_name=a['first_name'],
            last_name=a['last_name'],
            role=a['role'],
        )
        db.add(account)
        await db.flush()

        if a['deposit']:
            await ledger.credit(account.id, a['deposit'], f'Seed deposit ({a["deposit"]} credits)')

        print(f'  ✓ {a["first_name"]} ({a["email"]}) — {a["deposit"]} credits, role={a["role"]}')

    await db.commit()


async def main():
    print()
    print('=' * 50)
    print('  OTPDesk Seed Script')
    print('=' * 50)
    print()

    await init_db()
    async with async_session() as db:
        print('[1/2] Wiping all data...')
        await wipe_all(db)

        print('[2/2] Creating test accounts...')
        await create_accounts(db)

    await engine.dispose()

    print()
    print('Done! Ready for testing.')
    print()
    print('  Tokens:')
    for a in TEST_ACCOUNTS:
        print(f'    {a["id"]}: {mint_token(a["id"])}')
    print()


if __name__ == '__main__':
    asyncio.run(main())
