from __future__ import annotations
import json
from typing import Any, Dict, List
from pydantic import BaseModel, ConfigDict, Field
from traffic_advisor.errors import (
    FailedToParseJsonHeader,
    MissingApplicationId,
    MissingRequestHeaders,
    MissingRequestUrl,
    MissingResponseHeaders,
)


class HashedRequest(BaseModel):
    url: str


class HashedResponse(BaseModel):
    bodySize: float
    bodyHash: str


class RequestHashIn(BaseModel):
    applicationId: str | None = None
    timestamp: float
    request: HashedRequest
    response: HashedResponse


class RouteIn(BaseModel):
    applicationId: str = Field(min_length=1)
    serviceId: str = Field(min_length=1)
    url: str = Field(min_length=1)
    route: str = Field(min_length=1)


class RoutesIn(BaseModel):
    routes: List[RouteIn]


class RecommendationStatusIn(BaseModel):
    status: str


class RecommendationRoutePatch(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    selected: bool | None = None
    ttl: int | None = Field(None, ge=0)
    cache_tag: str | None = Field(None, alias="cacheTag")
    vary_headers: List[str] | None = Field(None, alias="varyHeaders")


def parse_json_header(value: str | None) -> Dict[str, Any]:
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError):
        raise FailedToParseJsonHeader(value)
    if not isinstance(parsed, dict):
        raise FailedToParseJsonHeader(value)
    return parsed


def parse_application_id(labels: str | None) -> str:
    application_id = parse_json_header(labels).get("applicationId")
    if not application_id:
        raise MissingApplicationId()
    return application_id


def parse_request_data(value: str | None) -> Dict[str, Any]:
    request = parse_json_header(value)
    if not request.get("url"):
        raise MissingRequestUrl()
    if not request.get("headers"):
        raise MissingRequestHeaders()
    return request


def parse_response_data(value: str | None) -> Dict[str, Any]:
    response = parse_json_header(value)
    if not response.get("headers"):
        raise MissingResponseHeaders()
    return response
