"""Integration tests: filter documents and paging state realized against SQLite."""

from datetime import timedelta

import pytest
from fastapi import HTTPException
from sqlalchemy import case, func, select

from conftest import LISTING_COUNT, START, Host, Listing
from fastapi_searchpager.builder import (
    apply_aggregation_stage,
    apply_filter,
    apply_sort,
    build_aggregation_pipeline,
    build_query,
    count_statement,
    limit_plus_one,
    paginate_statement,
)
from fastapi_searchpager.compiler import INVALID_DATE
from fastapi_searchpager.core import parse_filters
from fastapi_searchpager.options import FieldOptions, Lookup, SortOrder


def ids(session, stmt):
    return [listing.id for listing in session.scalars(stmt).all()]


def filtered_ids(session, document, sort=None):
    stmt = apply_filter(Listing, document, select(Listing))
    stmt = apply_sort(Listing, sort or {"id": SortOrder.ASC}, stmt)
    return ids(session, stmt)


# ──────────────────────────────────────────────────────────────
# build_query
# ──────────────────────────────────────────────────────────────


class TestBuildQuery:

    def test_no_params_selects_everything(self, session, listing_options):
        assert len(ids(session, build_query(Listing, {}, listing_options))) == LISTING_COUNT

    def test_search_is_case_insensitive(self, session, listing_options):
        stmt = build_query(Listing, {"search": "LAP", "sortBy": "id", "sortOrder": "asc"}, listing_options)

        assert ids(session, stmt) == [5, 10, 15, 20, 25]

    def test_range_and_boolean(self, session, listing_options):
        params = {"price_min": "100", "price_max": "200", "is_available": "true", "sortBy": "price", "sortOrder": "asc"}

        assert ids(session, build_query(Listing, params, listing_options)) == [5, 7, 8, 10]

    def test_date_range(self, session, listing_options):
        params = {"created_from": "2024-01-03T12:00:00", "created_to": "2024-01-05T12:00:00", "sortBy": "id", "sortOrder": "asc"}

        assert ids(session, build_query(Listing, params, listing_options)) == [2, 3, 4]

    def test_relationship_filter(self, session, listing_options):
        stmt = build_query(Listing, {"host.name": "Bob", "country": "Italy"}, listing_options)

        assert sorted(ids(session, stmt)) == [13, 15, 17, 19, 21, 23]

    def test_array_in_filter(self, session, listing_options):
        stmt = build_query(Listing, {"id": ["3", "4", "99"]}, listing_options)

        assert sorted(ids(session, stmt)) == [3, 4]

    def test_sort_descending_by_default(self, session, listing_options):
        stmt = build_query(Listing, {"sortBy": "price"}, listing_options)

        assert ids(session, stmt)[:3] == [25, 24, 23]

    def test_sort_through_relationship(self, session, listing_options):
        stmt = build_query(Listing, {"sortBy": "host.name", "sortOrder": "desc", "country": "Spain"}, listing_options)

        assert ids(session, stmt)[0] in {14, 16, 18, 20, 22, 24}

    def test_invalid_sort_field(self, listing_options):
        with pytest.raises(HTTPException) as exc:
            build_query(Listing, {"sortBy": "nope"}, listing_options)

        assert exc.value.status_code == 400

    def test_malformed_date_matches_nothing(self, session, listing_options):
        assert ids(session, build_query(Listing, {"created_from": "soon"}, listing_options)) == []

    def test_malformed_number_matches_nothing(self, session, listing_options):
        assert ids(session, build_query(Listing, {"price_min": "cheap"}, listing_options)) == []


# ──────────────────────────────────────────────────────────────
# Operator realization
# ──────────────────────────────────────────────────────────────


class TestOperators:

    def test_comparisons(self, session):
        assert filtered_ids(session, {"price": {"$gt": 460}}) == [24, 25]
        assert filtered_ids(session, {"price": {"$gte": 480}}) == [24, 25]
        assert filtered_ids(session, {"price": {"$lt": 40}}) == [1]
        assert filtered_ids(session, {"price": {"$lte": 40}}) == [1, 2]
        assert len(filtered_ids(session, {"price": {"$ne": 20}})) == LISTING_COUNT - 1

    def test_string_operands_take_column_type(self, session):
        assert filtered_ids(session, {"price": {"$lte": "40"}}) == [1, 2]
        assert filtered_ids(session, {"created_at": {"$lt": "2024-01-03T12:00:00"}}) == [1]

    def test_set_membership(self, session):
        assert filtered_ids(session, {"id": {"$in": [1, 2]}}) == [1, 2]
        assert len(filtered_ids(session, {"id": {"$nin": [1, 2]}})) == LISTING_COUNT - 2

    def test_regex(self, session):
        assert filtered_ids(session, {"title": {"$regex": "^listing 0[1-3]$", "$options": "i"}}) == [1, 2, 3]
        assert filtered_ids(session, {"title": {"$regex": "^listing"}}) == []

    def test_exists(self, session):
        assert filtered_ids(session, {"host_id": {"$exists": False}}) == [25]
        assert len(filtered_ids(session, {"host_id": {"$exists": True}})) == LISTING_COUNT - 1

    def test_or_and(self, session):
        document = {"$or": [{"id": 1}, {"$and": [{"price": {"$gte": 480}}, {"country": "Italy"}]}]}

        assert filtered_ids(session, document) == [1, 25]

    def test_invalid_date_operands(self, session):
        assert filtered_ids(session, {"created_at": {"$gte": INVALID_DATE}}) == []
        assert filtered_ids(session, {"created_at": INVALID_DATE}) == []
        assert len(filtered_ids(session, {"created_at": {"$ne": INVALID_DATE}})) == LISTING_COUNT

    def test_empty_document_has_no_expression(self):
        expression, _ = parse_filters(Listing, {}, select(Listing))

        assert expression is None

    @pytest.mark.parametrize("document", [
        {"price": {"$between": [1, 2]}},
        {"nope": 1},
        {"$nor": [{"id": 1}]},
        {"$or": {"id": 1}},
        {"created_at": {"$gt": "yesterday"}},
        {"id": {"$in": [1, 2**64]}},
        {"price": {"$gte": -(2**70)}},
    ])
    def test_unrealizable_documents_are_rejected(self, document):
        with pytest.raises(HTTPException) as exc:
            parse_filters(Listing, document, select(Listing))

        assert exc.value.status_code == 400

    def test_relationship_joined_once(self, session):
        document = {"$or": [{"host.name": "Alice"}, {"host.name": "Bob"}]}

        stmt = apply_filter(Listing, document, select(Listing))

        assert str(stmt).count("JOIN") == 1
        assert len(ids(session, stmt)) == LISTING_COUNT - 1


# ──────────────────────────────────────────────────────────────
# Paging statements
# ──────────────────────────────────────────────────────────────


class TestPagingStatements:

    def test_offset_page_and_count(self, session, paginator, listing_options):
        params = {"country": "Italy", "page": "2", "limit": "5", "sortBy": "id", "sortOrder": "asc"}
        stmt = build_query(Listing, params, listing_options)
        state = paginator.build_pagination(params)

        total = session.scalar(count_statement(stmt))
        page = paginator.paginate(ids(session, paginate_statement(stmt, state)), state, total)

        assert total == 13
        assert page.data == [11, 13, 15, 17, 19]
        assert page.pagination.total_pages == 3
        assert page.pagination.has_next is True

    def test_walk_with_cursor(self, session, paginator):
        seen = []
        params = {"limit": "10"}
        while True:
            state = paginator.build_cursor_pagination(params, "created_at", "desc")
            stmt = apply_filter(Listing, paginator.build_cursor_query(state), select(Listing))
            stmt = apply_sort(Listing, paginator.cursor_sort(state), stmt)
            listings = session.scalars(limit_plus_one(stmt, state.limit)).all()

            page = paginator.process_cursor_results(listings, state)
            seen.extend(listing.id for listing in page.data)
            if not page.pagination.has_next:
                break
            # clients send the cursor back as text
            params = {"limit": "10", "cursor": page.pagination.next_cursor.isoformat()}

        assert seen == list(range(LISTING_COUNT, 0, -1))

    def test_cursor_previous_direction(self, session, paginator):
        cursor = (START + timedelta(days=10)).isoformat()
        state = paginator.build_cursor_pagination(
            {"cursor": cursor, "direction": "prev", "limit": "3"}, "created_at", "desc")
        stmt = apply_filter(Listing, paginator.build_cursor_query(state), select(Listing))
        stmt = apply_sort(Listing, {"created_at": SortOrder.ASC}, stmt)

        page = paginator.process_cursor_results(session.scalars(limit_plus_one(stmt, state.limit)).all(), state)

        assert [listing.id for listing in page.data] == [11, 12, 13]
        assert page.pagination.has_prev is True

    def test_huge_page_executes(self, session, paginator):
        state = paginator.build_pagination({"page": "99999999999999999999", "limit": "5"})

        assert ids(session, paginate_statement(select(Listing), state)) == []

    def test_huge_last_id_is_a_bad_request(self, paginator):
        state = paginator.build_infinite_scroll({"lastId": "99999999999999999999"})

        with pytest.raises(HTTPException) as exc:
            apply_filter(Listing, paginator.build_infinite_query(state), select(Listing))

        assert exc.value.status_code == 400

    def test_walk_with_infinite_scroll(self, session, paginator):
        seen = []
        params = {"limit": "7"}
        while True:
            state = paginator.build_infinite_scroll(params)
            stmt = apply_filter(Listing, paginator.build_infinite_query(state), select(Listing))
            stmt = apply_sort(Listing, paginator.infinite_sort(state), stmt)

            page = paginator.process_infinite_results(session.scalars(limit_plus_one(stmt, state.limit)).all(), state)
            seen.extend(listing.id for listing in page.data)
            if not page.has_more:
                break
            params = {"limit": "7", "lastId": str(page.next_cursor)}

        assert seen == list(range(LISTING_COUNT, 0, -1))


# ──────────────────────────────────────────────────────────────
# Aggregation
# ──────────────────────────────────────────────────────────────


class TestAggregationPipeline:

    @pytest.fixture
    def advanced_options(self, listing_options):
        return FieldOptions(
            rules=listing_options.rules,
            populate=(Lookup(from_=Host, local_field="host_id", foreign_field="id", as_="host"),),
            computed_fields={
                "price_range": case((Listing.price < 100, "Budget"), (Listing.price < 400, "Mid-range"), else_="Premium"),
                "source": "seed",
            },
        )

    def test_page_and_total_in_one_statement(self, session, paginator, advanced_options):
        params = {"country": "Spain", "limit": "4", "page": "2", "sortBy": "price", "sortOrder": "asc"}

        rows = session.execute(build_aggregation_pipeline(Listing, params, advanced_options, paginator)).all()
        page = paginator.process_results(rows, paginator.build_pagination(params))

        assert [record["id"] for record in page.data] == [10, 12, 14, 16]
        assert page.pagination.total_count == 12
        assert page.pagination.total_pages == 3
        assert page.data[0]["price_range"] == "Mid-range"
        assert page.data[0]["source"] == "seed"
        assert page.data[0]["host"]["name"] == "Alice"
        assert page.data[2]["host"]["name"] == "Bob"

    def test_page_past_the_end_keeps_total(self, session, paginator, advanced_options):
        params = {"page": "9", "limit": "5"}

        rows = session.execute(build_aggregation_pipeline(Listing, params, advanced_options, paginator)).all()
        page = paginator.process_results(rows, paginator.build_pagination(params))

        assert page.data == []
        assert page.pagination.total_count == LISTING_COUNT
        assert page.pagination.total_pages == 5

    def test_no_matches_reports_zero(self, session, paginator, advanced_options):
        params = {"country": "Atlantis"}

        rows = session.execute(build_aggregation_pipeline(Listing, params, advanced_options, paginator)).all()
        page = paginator.process_results(rows, paginator.build_pagination(params))

        assert page.data == []
        assert page.pagination.total_count == 0

    def test_unmatched_lookup_is_none(self, session, paginator, advanced_options):
        params = {"sortBy": "id", "sortOrder": "desc", "limit": "1"}

        rows = session.execute(build_aggregation_pipeline(Listing, params, advanced_options, paginator)).all()
        page = paginator.process_results(rows, paginator.build_pagination(params))

        assert page.data[0]["id"] == 25
        assert page.data[0]["host"] is None
        assert page.pagination.total_count == LISTING_COUNT

    def test_sort_by_computed_field(self, session, paginator, advanced_options):
        params = {"sortBy": "price_range", "sortOrder": "asc", "limit": "3"}

        rows = session.execute(build_aggregation_pipeline(Listing, params, advanced_options, paginator)).all()
        page = paginator.process_results(rows, paginator.build_pagination(params))

        assert {record["price_range"] for record in page.data} == {"Budget"}

    def test_grouped_page_with_separate_count(self, session, paginator):
        params = {"limit": "1"}
        grouped = (
            select(Listing.country, func.count(Listing.id).label("listings"))
            .group_by(Listing.country)
            .order_by(func.count(Listing.id).desc())
        )

        rows = session.execute(apply_aggregation_stage(grouped, paginator.build_aggregation_pagination(params))).all()
        total = session.scalar(count_statement(grouped))
        page = paginator.process_aggregation_results(rows, paginator.build_pagination(params), total)

        assert [(row.country, row.listings) for row in page.data] == [("Italy", 13)]
        assert page.pagination.has_more is True
        assert page.pagination.total_count == 2
        assert page.pagination.total_pages == 2
