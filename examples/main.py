import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from fastapi import FastAPI, Depends, Request
from sqlalchemy import String, ForeignKey, select, case, func, desc
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column, relationship, declarative_base
import uvicorn

from fastapi_searchpager.builder import (
    apply_aggregation_stage,
    apply_filter,
    apply_sort,
    build_aggregation_pipeline,
    count_statement,
    limit_plus_one,
    paginate_statement,
)
from fastapi_searchpager.compiler import QueryParameters, compile_filter
from fastapi_searchpager.dependencies import QueryBuilder, ValidatedPagination, get_paginator
from fastapi_searchpager.options import (
    BooleanField,
    DateField,
    FieldOptions,
    FilterField,
    Lookup,
    RangeField,
    SearchField,
)
from fastapi_searchpager.pagination import Paginator
from fastapi_searchpager.params import query_parameters
from fastapi_searchpager.schemas import CursorPage, InfiniteScrollPage, OffsetPage

from examples.schemas import CountryStats, ListingResponse, ListingSummary

# ───── App & DB Setup ───────────────────────────

DATABASE_URL = os.environ.get("LISTINGS_DATABASE_URL", "sqlite+aiosqlite:///./listings.db")

engine = create_async_engine(DATABASE_URL)
SessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False)
Base = declarative_base()


async def get_db():
    async with SessionLocal() as session:
        yield session


# ───── Models ────────────────────────────────────

class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    username: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String, unique=True)

    listings: Mapped[list["Listing"]] = relationship("Listing", back_populates="host")


class Listing(Base):
    __tablename__ = "listings"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    title: Mapped[str] = mapped_column(String, index=True)
    description: Mapped[str] = mapped_column(String)
    price: Mapped[int] = mapped_column(index=True)
    location: Mapped[str] = mapped_column(String)
    country: Mapped[str] = mapped_column(String, index=True)
    is_available: Mapped[bool] = mapped_column(default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(index=True)
    host_id: Mapped[int] = mapped_column(ForeignKey("users.id"))

    host: Mapped["User"] = relationship("User", back_populates="listings", lazy="selectin")


LISTING_OPTIONS = FieldOptions(rules=(
    SearchField(field="title"),
    SearchField(field="description"),
    SearchField(field="location"),
    FilterField(field="country"),
    FilterField(field="host.username"),
    RangeField(name="price", field="price"),
    DateField(name="created", field="created_at"),
    BooleanField(field="is_available"),
))

ADVANCED_OPTIONS = FieldOptions(
    rules=LISTING_OPTIONS.rules,
    populate=(Lookup(from_=User, local_field="host_id", foreign_field="id", as_="host"),),
    computed_fields={
        "price_range": case(
            (Listing.price < 100, "Budget"),
            (Listing.price < 500, "Mid-range"),
            else_="Premium",
        ),
    },
)


# ───── Lifespan / Seed Data ─────────────────────

@asynccontextmanager
async def lifespan(_: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with SessionLocal() as session:
        result = await session.execute(select(User))
        if not result.scalars().first():
            alice = User(username="alice", email="alice@example.com")
            bob = User(username="bob", email="bob@example.com")
            session.add_all([alice, bob])
            await session.commit()

            start = datetime(2024, 1, 1, 9, 0, 0)
            seed = [
                ("Cozy Beachfront Cottage", "Laid-back beach escape", 1500, "Malibu", "United States", alice),
                ("Modern Loft in Downtown", "Stylish loft in the city", 120, "New York City", "United States", bob),
                ("Mountain Retreat", "Quiet cabin near the lake", 90, "Aspen", "United States", alice),
                ("Historic Villa in Tuscany", "Rolling hills and vineyards", 2500, "Florence", "Italy", bob),
                ("Secluded Treehouse Getaway", "Lap of nature, off the grid", 80, "Portland", "United States", alice),
                ("Canal-side Apartment", "Walk to every museum", 450, "Amsterdam", "Netherlands", bob),
                ("Ski-In Chalet", "Slopes at the doorstep", 3000, "Verbier", "Switzerland", alice),
                ("Safari Lodge", "Wildlife from the porch", 400, "Serengeti", "Tanzania", bob),
            ]
            session.add_all([
                Listing(title=title, description=description, price=price, location=location,
                        country=country, host=host, is_available=index % 3 != 2,
                        created_at=start + timedelta(days=index))
                for index, (title, description, price, location, country, host) in enumerate(seed)
            ])
            await session.commit()

    yield

# ───── FastAPI App ───────────────────────────────

app = FastAPI(lifespan=lifespan)


def _base_url(request: Request) -> str:
    return str(request.url.replace(query=""))


@app.get("/listings", response_model=OffsetPage[ListingResponse], response_model_exclude_none=True)
async def list_listings(
    request: Request,
    state: ValidatedPagination,
    query=QueryBuilder(Listing, LISTING_OPTIONS),
    params: QueryParameters = Depends(query_parameters),
    paginator: Paginator = Depends(get_paginator),
    session: AsyncSession = Depends(get_db),
):
    total_count = await session.scalar(count_statement(query))
    result = await session.execute(paginate_statement(query, state))
    listings = [ListingResponse.model_validate(row) for row in result.scalars().all()]

    info = paginator.build_pagination_info(state, total_count)
    info = paginator.build_pagination_metadata(info, _base_url(request), params)
    return OffsetPage(data=listings, pagination=info)


@app.get("/listings/cursor", response_model=CursorPage[ListingResponse])
async def list_listings_cursor(
    params: QueryParameters = Depends(query_parameters),
    paginator: Paginator = Depends(get_paginator),
    session: AsyncSession = Depends(get_db),
):
    state = paginator.build_cursor_pagination(params, "created_at", "desc")
    filters = paginator.build_cursor_query(state, compile_filter(params, LISTING_OPTIONS))

    stmt = apply_filter(Listing, filters, select(Listing))
    stmt = apply_sort(Listing, paginator.cursor_sort(state), stmt)
    result = await session.execute(limit_plus_one(stmt, state.limit))

    listings = [ListingResponse.model_validate(row) for row in result.scalars().all()]
    return paginator.process_cursor_results(listings, state)


@app.get("/listings/infinite", response_model=InfiniteScrollPage[ListingResponse])
async def list_listings_infinite(
    params: QueryParameters = Depends(query_parameters),
    paginator: Paginator = Depends(get_paginator),
    session: AsyncSession = Depends(get_db),
):
    state = paginator.build_infinite_scroll(params)
    stmt = apply_filter(Listing, paginator.build_infinite_query(state), select(Listing))
    stmt = apply_sort(Listing, paginator.infinite_sort(state), stmt)
    result = await session.execute(limit_plus_one(stmt, state.limit))

    listings = [ListingResponse.model_validate(row) for row in result.scalars().all()]
    return paginator.process_infinite_results(listings, state)


@app.get("/listings/advanced", response_model=OffsetPage[ListingSummary])
async def list_listings_advanced(
    state: ValidatedPagination,
    params: QueryParameters = Depends(query_parameters),
    paginator: Paginator = Depends(get_paginator),
    session: AsyncSession = Depends(get_db),
):
    pipeline = build_aggregation_pipeline(Listing, params, ADVANCED_OPTIONS, paginator)
    result = await session.execute(pipeline)
    return paginator.process_results(result.all(), state)


@app.get("/listings/stats", response_model=OffsetPage[CountryStats])
async def listing_stats(
    state: ValidatedPagination,
    params: QueryParameters = Depends(query_parameters),
    paginator: Paginator = Depends(get_paginator),
    session: AsyncSession = Depends(get_db),
):
    grouped = (
        select(
            Listing.country,
            func.count(Listing.id).label("listings"),
            func.avg(Listing.price).label("avg_price"),
        )
        .group_by(Listing.country)
        .order_by(desc("listings"), Listing.country)
    )

    result = await session.execute(
        apply_aggregation_stage(grouped, paginator.build_aggregation_pagination(params)))
    rows = [CountryStats.model_validate(row) for row in result.all()]

    # Total number of groups comes from its own round trip
    total_count = await session.scalar(count_statement(grouped))
    return paginator.process_aggregation_results(rows, state, total_count)


# ───── Run Server ────────────────────────────────

if __name__ == "__main__":
    uvicorn.run("examples.main:app", host="0.0.0.0", port=8000, reload=True)
