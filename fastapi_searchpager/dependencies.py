# fastapi_searchpager/dependencies.py

import logging
from functools import lru_cache
from typing import Annotated, Optional, Type

from fastapi import Depends, HTTPException
from sqlalchemy import Select

from .builder import build_query
from .compiler import QueryParameters
from .options import FieldOptions
from .pagination import Paginator
from .params import QueryParams, query_parameters
from .schemas import PaginationState
from .settings import get_pagination_settings

logger = logging.getLogger(__name__)


@lru_cache
def get_paginator() -> Paginator:
    return Paginator.from_settings(get_pagination_settings())


def validated_pagination(
    params: QueryParameters = Depends(query_parameters),
    paginator: Paginator = Depends(get_paginator),
) -> PaginationState:
    result = paginator.validate_pagination(params)
    if not result.is_valid:
        logger.warning("Invalid pagination parameters: %s", result.errors)
        raise HTTPException(
            status_code=400,
            detail={"error": "Invalid pagination parameters", "details": result.errors},
        )
    return paginator.build_pagination(params)


ValidatedPagination = Annotated[PaginationState, Depends(validated_pagination)]


def QueryBuilder(model: Type, options: Optional[FieldOptions] = None):
    def wrapper(
        params: QueryParameters = Depends(query_parameters),
        query: QueryParams = Depends(),
    ) -> Select:
        return build_query(model, params, options, sort=query.sort)
    return Depends(wrapper)
