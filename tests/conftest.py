"""Shared fixtures: an in-memory SQLite database of listings and hosts."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import ForeignKey, String, create_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, relationship
from sqlalchemy.pool import StaticPool

from fastapi_searchpager.options import (
    BooleanField,
    DateField,
    FieldOptions,
    FilterField,
    Operator,
    RangeField,
    SearchField,
    ValueType,
)
from fastapi_searchpager.pagination import Paginator

START = datetime(2024, 1, 1, 12, 0, 0)
LISTING_COUNT = 25


class Base(DeclarativeBase):
    pass


class Host(Base):
    __tablename__ = "hosts"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String, unique=True)

    listings: Mapped[list["Listing"]] = relationship(back_populates="host")


class Listing(Base):
    __tablename__ = "listings"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String)
    description: Mapped[str] = mapped_column(String)
    price: Mapped[int]
    country: Mapped[str] = mapped_column(String)
    is_available: Mapped[bool]
    created_at: Mapped[datetime]
    host_id: Mapped[int | None] = mapped_column(ForeignKey("hosts.id"), nullable=True)

    host: Mapped[Host | None] = relationship(back_populates="listings")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice = Host(name="Alice")
        bob = Host(name="Bob")
        session.add_all([alice, bob])
        for i in range(1, LISTING_COUNT + 1):
            session.add(Listing(
                id=i,
                title=f"Listing {i:02d}",
                description="Lap pool and sauna" if i % 5 == 0 else "Garden view",
                price=i * 20,
                country="Italy" if i % 2 else "Spain",
                is_available=i % 3 != 0,
                created_at=START + timedelta(days=i),
                host=alice if i <= 12 else (bob if i <= 24 else None),
            ))
        session.commit()

    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def paginator():
    return Paginator(default_limit=20, max_limit=100)


@pytest.fixture
def listing_options():
    return FieldOptions(rules=(
        SearchField(field="title"),
        SearchField(field="description"),
        FilterField(field="country"),
        FilterField(field="host.name"),
        FilterField(field="id", value_type=ValueType.ARRAY, operator=Operator.IN),
        RangeField(name="price", field="price"),
        DateField(name="created", field="created_at"),
        BooleanField(field="is_available"),
    ))
