from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from uuid import uuid4

from pydantic import BaseModel, Field

from .ledger import AccountId, PortfolioId, UserId


class AccountType(StrEnum):
    BROKERAGE = "BROKERAGE"
    BANK = "BANK"
    CRYPTO_EXCHANGE = "CRYPTO_EXCHANGE"
    RETIREMENT = "RETIREMENT"
    REAL_ESTATE = "REAL_ESTATE"
    OTHER = "OTHER"


class Account(BaseModel):
    id: AccountId = AccountId(Field(default_factory=lambda: uuid4().hex))
    name: str
    account_type: AccountType = AccountType.BROKERAGE


class Portfolio(BaseModel):
    id: PortfolioId = PortfolioId(Field(default_factory=lambda: uuid4().hex))
    name: str
    user_id: UserId
    created_at: datetime = Field(default_factory=datetime.now)
    accounts: list[Account] = Field(default_factory=list)

    @property
    def account_ids(self) -> list[AccountId]:
        return [account.id for account in self.accounts]

    def account_name(self, account_id: AccountId) -> str:
        for account in self.accounts:
            if account.id == account_id:
                return account.name
        return account_id
