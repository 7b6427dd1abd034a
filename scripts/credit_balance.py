#!/usr/bin/env python3
"""Credit balance to a holder directly in database, or revoke the operator."""

import asyncio
import sys

from dotenv import load_dotenv
load_dotenv()

from metaswap.ledger.database import get_db, init_db
from metaswap.ledger.repository import LedgerRepository


async def credit_balance(holder: str, asset: str, amount: int):
    await init_db()
    async with get_db() as session:
        repo = LedgerRepository(session)
        balance = await repo.credit_balance(holder, asset, amount)

        print(f"Credited {amount} of {balance.asset} to {balance.holder}")
        print(f"New balance: {balance.amount}")


async def set_revoked(holder: str, asset: str, revoked: bool):
    await init_db()
    async with get_db() as session:
        balance = await LedgerRepository(session).set_operator_revoked(holder, asset, revoked)
        state = "revoked" if revoked else "authorized"
        print(f"Operator {state} for {balance.holder} on {balance.asset}")


if __name__ == "__main__":
    if len(sys.argv) == 4 and sys.argv[1] in ("--revoke", "--authorize"):
        asyncio.run(set_revoked(sys.argv[3], sys.argv[2], sys.argv[1] == "--revoke"))
        sys.exit(0)

    if len(sys.argv) != 4:
        print("Usage: python credit_balance.py <holder> <asset> <amount>")
        print("       python credit_balance.py --revoke|--authorize <asset> <holder>")
        print("Example: python credit_balance.py 0x70997970C51812dc3A010C7d01b50e0d17dc79C8 "
              "0x5FbDB2315678afecb367f032d93F642f64180aa3 10000000000000000000")
        sys.exit(1)

    holder = sys.argv[1]
    asset = sys.argv[2]
    amount = int(sys.argv[3])

    asyncio.run(credit_balance(holder, asset, amount))
