from __future__ import annotations
import json
import logging
from typing import Optional
from fastapi import APIRouter, Body, Depends, Header, Query, Request, Response
from traffic_advisor.errors import DomainNotFound
from traffic_advisor.ingestion import TrafficGateway
from traffic_advisor.services import get_gateway
from traffic_advisor.validation.requests import (
    RequestHashIn,
    RoutesIn,
    parse_application_id,
    parse_request_data,
    parse_response_data,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["requests"])


def _decode_body(raw: bytes, content_type: str | None):
    if not raw:
        return None
    text = raw.decode("utf-8", errors="replace")
    if content_type and "json" in content_type:
        try:
            return json.loads(text)
        except ValueError:
            return text
    return text


@router.post("/requests/hash", status_code=204)
def save_request_hash(
    payload: RequestHashIn = Body(...),
    x_labels: Optional[str] = Header(None, alias="x-labels"),
    gateway: TrafficGateway = Depends(get_gateway),
):
    application_id = parse_application_id(x_labels)
    gateway.record_hash(
        application_id,
        payload.timestamp,
        payload.request.model_dump(),
        payload.response.model_dump(),
    )
    return Response(status_code=204)


@router.post("/requests", status_code=204)
async def save_request(
    request: Request,
    x_labels: Optional[str] = Header(None, alias="x-labels"),
    x_request_data: Optional[str] = Header(None, alias="x-request-data"),
    x_response_data: Optional[str] = Header(None, alias="x-response-data"),
    gateway: TrafficGateway = Depends(get_gateway),
):
    application_id = parse_application_id(x_labels)
    request_data = parse_request_data(x_request_data)
    response_data = parse_response_data(x_response_data)
    response_data["body"] = _decode_body(await request.body(), request.headers.get("content-type"))
    stored = gateway.record_request(application_id, request_data, response_data)
    logger.debug("request capture for %s %s: %s", application_id, request_data["url"], "stored" if stored else "skipped")
    return Response(status_code=204)


@router.post("/routes", status_code=204)
def save_routes(payload: RoutesIn = Body(...), gateway: TrafficGateway = Depends(get_gateway)):
    gateway.record_routes(r.model_dump() for r in payload.routes)
    return Response(status_code=204)


@router.get("/domains/{domain}")
def resolve_domain(
    domain: str,
    application_id: str = Query(..., alias="applicationId"),
    gateway: TrafficGateway = Depends(get_gateway),
):
    """Service identity the ingestion path attributes traffic for ``domain`` to."""
    identity = gateway.directory.resolve(domain, application_id)
    if identity is None:
        raise DomainNotFound(domain)
    return {
        "applicationId": identity.application_id,
        "applicationName": identity.application_name,
        "serviceId": identity.service_id,
        "serviceName": identity.service_name,
        "telemetryId": identity.telemetry_id,
    }
