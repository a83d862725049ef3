from fastapi import FastAPI, Depends, Response, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
import logging
import json
import time
import uuid
from traffic_advisor.config import get_settings
from traffic_advisor.errors import TrafficAdvisorError
from traffic_advisor.infrastructure.db import get_db, healthcheck
from traffic_advisor.infrastructure.metrics import registry, REQUESTS, LATENCY
from traffic_advisor.infrastructure.redis_store import get_redis
from traffic_advisor.lifecycle import get_updates
from traffic_advisor.api.requests import router as requests_router
from traffic_advisor.api.recommendations import router as recommendations_router

app = FastAPI(title="Traffic Advisor API", version="0.1.0")
app.include_router(requests_router)
app.include_router(recommendations_router)


@app.exception_handler(TrafficAdvisorError)
async def traffic_advisor_exception_handler(request: Request, exc: TrafficAdvisorError):
    cid = getattr(request.state, "correlation_id", "n/a")
    log = logging.getLogger("app")
    (log.error if exc.status_code >= 500 else log.info)(json.dumps({
        "event": "request_error",
        "path": request.url.path,
        "code": exc.code,
        "detail": exc.message,
        "correlation_id": cid,
    }))
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    cid = getattr(request.state, "correlation_id", "n/a")
    logging.getLogger("app").error(json.dumps({
        "event": "error",
        "path": request.url.path,
        "detail": str(exc),
        "correlation_id": cid,
        "type": exc.__class__.__name__,
    }))
    return Response(content=json.dumps({"error": "internal_error", "correlation_id": cid}), media_type="application/json", status_code=500)


@app.middleware("http")
async def metrics_and_correlation(request: Request, call_next):
    start = time.time()
    correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
    request.state.correlation_id = correlation_id
    response = await call_next(request)
    duration = time.time() - start
    ep = request.url.path
    REQUESTS.labels(endpoint=ep).inc()
    LATENCY.labels(endpoint=ep).observe(duration)
    if 'X-Process-Time' not in response.headers:
        response.headers['X-Process-Time'] = f"{duration:.4f}"
    response.headers['X-Correlation-ID'] = correlation_id
    logging.getLogger("app").info(json.dumps({
        "event": "request",
        "path": request.url.path,
        "method": request.method,
        "status": response.status_code,
        "duration_ms": int(duration*1000),
        "correlation_id": correlation_id
    }))
    return response


@app.on_event("startup")
def startup():
    settings = get_settings()
    # Configure structured logger once
    logger = logging.getLogger("app")
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter('%(message)s')  # already JSON
        handler.setFormatter(formatter)
        logger.setLevel(settings.log_level.upper())
        logger.addHandler(handler)
    logging.getLogger("traffic_advisor").setLevel(settings.log_level.upper())


@app.get("/health")
def health():
    return {"db": healthcheck(), "status": "ok"}


@app.get("/ready")
def readiness():
    """Readiness probe that ensures the durable and ephemeral stores are reachable."""
    db_ok = healthcheck()
    redis_ok = True
    try:
        get_redis().ping()
    except Exception as exc:
        logging.getLogger("app").warning(json.dumps({"event": "redis_unreachable", "detail": str(exc)}))
        redis_ok = False
    status = db_ok and redis_ok
    return {"status": "ok" if status else "degraded", "db": db_ok, "redis": redis_ok}


@app.get("/metrics")
def metrics():
    data = generate_latest(registry)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


@app.get("/updates")
def updates(db: Session = Depends(get_db)):
    return get_updates(db)
