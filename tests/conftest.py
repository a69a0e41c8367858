import uuid
from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from household_budget.core.database import Base, get_db
from household_budget import models  # noqa: F401  registers tables on Base.metadata
from household_budget.models.category import Category
from household_budget.models.transaction import Transaction
from household_budget.services.personal_budget_service import PersonalBudgetService


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def db_session(engine):
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = session_local()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def household_id():
    return uuid.uuid4()


@pytest.fixture()
def today():
    """Fixed 'now' inside November 2025"""
    return date(2025, 11, 15)


@pytest.fixture()
def template(db_session, household_id):
    """Active template v1 with three categories"""
    return PersonalBudgetService(db_session).create(
        household_id,
        categories={
            "Groceries": {"monthly_limit": "500"},
            "Dining": {"monthly_limit": "100", "warning_threshold": 70},
            "Food": {"monthly_limit": "200", "color": "#10B981"},
        },
    )


@pytest.fixture()
def category_by_name(db_session, household_id):
    def _lookup(name: str) -> Category:
        return db_session.query(Category).filter(
            Category.household_id == household_id,
            Category.name == name,
        ).one()
    return _lookup


@pytest.fixture()
def add_transactions(db_session, household_id):
    def _add(category: Category, count: int, amount: str = "10.00"):
        rows = []
        for i in range(count):
            row = Transaction(
                household_id=household_id,
                category_id=category.id,
                category=category.name,
                amount=Decimal(amount),
                description=f"purchase {i}",
                transaction_date=date(2025, 11, 1 + i),
            )
            db_session.add(row)
            rows.append(row)
        db_session.commit()
        return rows
    return _add


@pytest_asyncio.fixture()
async def client(db_session):
    from household_budget.main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
