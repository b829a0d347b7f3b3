# fastapi_searchpager/params.py

from typing import Optional

from fastapi import Query, Request

from .compiler import QueryParameters, SortSpec, build_sort


def query_parameters(request: Request) -> QueryParameters:
    """Flatten the request query string; repeated keys become lists."""
    params = {}
    for key in request.query_params.keys():
        values = request.query_params.getlist(key)
        params[key] = values[0] if len(values) == 1 else values
    return params


class QueryParams:
    """Documents the common search/sort/paging parameters in OpenAPI.

    Values stay strings so malformed input reaches the paginator's own
    validation instead of failing request parsing.
    """

    def __init__(
        self,
        search: Optional[str] = Query(None, description="A string for free-text search across the route's search fields."),
        sortBy: Optional[str] = Query(None, description="Field to sort by, e.g. price or host.name"),
        sortOrder: Optional[str] = Query(None, description="asc or desc (default desc)"),
        page: Optional[str] = Query(None, description="1-based page number"),
        limit: Optional[str] = Query(None, description="Items per page"),
    ):
        self.search = search
        self.sort_by = sortBy
        self.sort_order = sortOrder
        self.page = page
        self.limit = limit

    @property
    def sort(self) -> SortSpec:
        return build_sort(self.sort_by, self.sort_order)
