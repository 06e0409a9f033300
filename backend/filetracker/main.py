import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Response, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration

from . import config, pubsub
from .exceptions import TrackerError
from .logging_config import configure_logging
from .routes import auth, requests, study_ids, notifications, admin_users
from .services.reconciliation import (
    OverdueMonitor,
    PendingRequestWatcher,
    push_pending_count_to_admins,
)
from .store import hub

configure_logging()
logger = logging.getLogger(__name__)

dsn = os.getenv("SENTRY_DSN")
if dsn:
    sentry_sdk.init(dsn=dsn, integrations=[FastApiIntegration()])

REQUEST_COUNT = Counter("request_count", "Total requests", ["method", "endpoint"])
REQUEST_LATENCY = Histogram(
    "request_latency_seconds", "Request latency", ["endpoint"]
)


def _push_pending(count: int) -> None:
    db = hub.session_factory()
    try:
        push_pending_count_to_admins(db, count)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    monitor = OverdueMonitor(hub).attach()
    watcher = PendingRequestWatcher(_push_pending, hub).attach()
    logger.info("Overdue monitor and pending watcher attached")
    try:
        yield
    finally:
        watcher.close()
        monitor.close()


app = FastAPI(title="Study File Checkout Tracker", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, lambda r, e: Response("Too Many Requests", status_code=429))
if not config.testing():
    app.add_middleware(SlowAPIMiddleware)


@app.exception_handler(TrackerError)
async def tracker_error_handler(request: Request, exc: TrackerError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    endpoint = request.url.path
    REQUEST_COUNT.labels(request.method, endpoint).inc()
    REQUEST_LATENCY.labels(endpoint).observe(time.time() - start)
    return response


@app.get("/metrics")
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(auth.router)
app.include_router(requests.router)
app.include_router(study_ids.router)
app.include_router(notifications.router)
app.include_router(admin_users.router)


def audit_routes():
    from fastapi.routing import APIRoute
    from .auth import current_identity, get_current_user

    public_paths = {"/metrics"}
    for route in app.routes:
        if isinstance(route, APIRoute) and route.path.startswith("/api") and route.path not in public_paths:
            calls = [dep.call for dep in route.dependant.dependencies]
            if get_current_user not in calls and current_identity not in calls:
                raise RuntimeError(f"Route {route.path} missing authentication")


audit_routes()


async def _relay(websocket: WebSocket, channel: str) -> None:
    await websocket.accept()
    try:
        async for data in pubsub.iter_channel_events(channel):
            await websocket.send_text(data)
    except WebSocketDisconnect:
        logger.debug("Websocket on %s disconnected", channel)


@app.websocket("/ws/notifications/{user_id}")
async def notifications_socket(websocket: WebSocket, user_id: str):
    await _relay(websocket, pubsub.user_channel(user_id))


@app.websocket("/ws/requests")
async def requests_socket(websocket: WebSocket):
    await _relay(websocket, pubsub.collection_channel("fileRequests"))
