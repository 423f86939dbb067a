from typing import Generator

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from db.models import Base
from db.repositories import LedgerEntryRepository, PortfolioRepository
from domain.ledger import UserId
from domain.portfolio import Account, AccountType, Portfolio
from services.price_service import PriceService
from tests.constants import BANK_ACCOUNT, BROKERAGE_ACCOUNT, USER_ID
from tests.helpers.price_utils import InMemoryPriceStore

# One shared connection so the API's worker threads see the same in-memory database.
engine: Engine = create_engine(
    "sqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool
)
session_factory = sessionmaker(engine)


@pytest.fixture(scope="function")
def test_session() -> Generator[Session, None, None]:
    with session_factory() as session:
        yield session


@pytest.fixture(scope="function", autouse=True)
def reset_db() -> Generator[None, None, None]:
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def ledger_repo(test_session: Session) -> LedgerEntryRepository:
    return LedgerEntryRepository(test_session)


@pytest.fixture(scope="function")
def portfolio_repo(test_session: Session) -> PortfolioRepository:
    return PortfolioRepository(test_session)


@pytest.fixture(scope="function")
def portfolio(portfolio_repo: PortfolioRepository) -> Portfolio:
    return portfolio_repo.create(
        Portfolio(
            name="Household",
            user_id=UserId(USER_ID),
            accounts=[
                Account(id=BROKERAGE_ACCOUNT, name="Brokerage", account_type=AccountType.BROKERAGE),
                Account(id=BANK_ACCOUNT, name="Checking", account_type=AccountType.BANK),
            ],
        )
    )


@pytest.fixture(scope="function")
def price_service() -> PriceService:
    return PriceService(store=InMemoryPriceStore())


@pytest.fixture(scope="function")
def db_session_factory() -> sessionmaker[Session]:
    return session_factory
