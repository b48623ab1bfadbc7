from fastapi import FastAPI, Request
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse, Response
from starlette.middleware.cors import CORSMiddleware
import os
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import pydantic
from dotenv import load_dotenv
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

# Load environment variables from .env, but avoid during pytest to keep tests deterministic
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from app import config
from app.auth import Credentials
from app.demo_cache import DemoSessionCache
from app.errors import SessionServiceError
from app.lifecycle import SessionLifecycle
from app.logs import get_logger, log_event
from app.middleware.request_id import RequestIdMiddleware
from app.orchestrator import AnalysisOrchestrator
from app.providers.factory import get_analysis_client, get_conversation_client
from app.schemas import AnalyzeRequest, EndSessionRequest, StartSessionRequest
from app.store.factory import get_store
from app.tasks import AnalysisTaskQueue
from app.telemetry import HTTP_REQUESTS_TOTAL, HTTP_REQUEST_DURATION_SECONDS

logger = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    store = get_store()
    orchestrator = AnalysisOrchestrator(
        store,
        client_factory=get_analysis_client,
        conversation_client_factory=get_conversation_client,
    )
    queue = AnalysisTaskQueue(config.ANALYSIS_WORKER_CONCURRENCY, failures_kept=config.ANALYSIS_FAILURES_KEPT)
    cache = DemoSessionCache(config.DEMO_CACHE_CAPACITY)
    app.state.store = store  # type: ignore[attr-defined]
    app.state.orchestrator = orchestrator  # type: ignore[attr-defined]
    app.state.analysis_queue = queue  # type: ignore[attr-defined]
    app.state.demo_cache = cache  # type: ignore[attr-defined]
    app.state.lifecycle = SessionLifecycle(  # type: ignore[attr-defined]
        store, orchestrator, queue, cache, conversation_client_factory=get_conversation_client,
    )
    queue.start()
    log_event(logger, "service_started", store=store.name, workerConcurrency=queue.concurrency)
    try:
        yield
    finally:
        # Shutdown
        await queue.stop()


app = FastAPI(
    title="SalesAI Session API",
    description="Session lifecycle, transcript metrics and sales-coaching analysis.",
    version="0.1.0",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-Id"],
    allow_credentials=False,
)
app.add_middleware(RequestIdMiddleware)


# HTTP metrics middleware
@app.middleware("http")
async def _http_metrics_middleware(request: Request, call_next):
    t0 = time.perf_counter()
    method = request.method
    status_code = 500
    try:
        response = await call_next(request)
        status_code = getattr(response, "status_code", 500)
        return response
    except Exception:
        status_code = 500
        raise
    finally:
        try:
            # Templated route path keeps label cardinality bounded
            route = request.scope.get("route")
            path = getattr(route, "path", None) or request.url.path
            status_class = f"{status_code // 100}xx"
            HTTP_REQUESTS_TOTAL.labels(method=method, path=path, status_class=status_class).inc()
            HTTP_REQUEST_DURATION_SECONDS.labels(method=method, path=path).observe(time.perf_counter() - t0)
        except Exception:
            pass


@app.exception_handler(SessionServiceError)
async def _session_error_handler(request: Request, exc: SessionServiceError):
    log_event(
        logger,
        "request_error",
        requestId=_request_id(request),
        path=request.url.path,
        status=exc.status_code,
        error=exc.detail,
    )
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)


def _request_id(request: Request) -> Optional[str]:
    return getattr(getattr(request, "state", object()), "request_id", None) or request.headers.get("x-request-id")


def _validation_detail(err: pydantic.ValidationError) -> str:
    errors = err.errors()
    if not errors:
        return "Invalid request"
    loc = errors[0].get("loc") or ()
    field = str(loc[0]) if loc else "request"
    if errors[0].get("type") == "missing":
        return f"{field} is required"
    return f"Invalid {field}"


async def _read_body(request: Request) -> Dict[str, Any]:
    try:
        payload = await request.json()
    except Exception:
        payload = None
    return payload if isinstance(payload, dict) else {}


@app.get("/health", tags=["meta"], description="Liveness endpoint for health checks.")
async def health():
    return {"status": "ok"}


@app.get("/metrics", tags=["meta"], include_in_schema=False)
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.post(
    "/api/session/start",
    tags=["sessions"],
    description="Start a session: server-issued id for authenticated owners, demo id otherwise.",
)
async def start_session(request: Request):
    payload = await _read_body(request)
    try:
        body = StartSessionRequest.model_validate(payload)
    except pydantic.ValidationError as e:
        return JSONResponse({"detail": _validation_detail(e)}, status_code=400)
    lifecycle: SessionLifecycle = request.app.state.lifecycle
    session = await lifecycle.start_session(
        Credentials.from_headers(request.headers),
        session_id=body.session_id,
        session_type=body.session_type,
        request_id=_request_id(request),
    )
    return {"session": session}


@app.post(
    "/api/session/end",
    tags=["sessions"],
    description="End a session, record usage, and hand any transcript to background analysis.",
)
async def end_session(request: Request):
    try:
        payload = await request.json()
    except Exception:
        return JSONResponse({"detail": "Invalid JSON body"}, status_code=400)
    try:
        body = EndSessionRequest.model_validate(payload)
    except pydantic.ValidationError as e:
        return JSONResponse({"detail": _validation_detail(e)}, status_code=400)
    lifecycle: SessionLifecycle = request.app.state.lifecycle
    session = await lifecycle.end_session(body, Credentials.from_headers(request.headers), _request_id(request))
    return {"session": session}


@app.post(
    "/api/session/analyze",
    tags=["analysis"],
    description="Analyze a session transcript; degrades to demo analysis instead of failing.",
)
async def analyze_session(request: Request):
    try:
        payload = await request.json()
    except Exception:
        return JSONResponse({"detail": "Invalid JSON body"}, status_code=400)
    try:
        body = AnalyzeRequest.model_validate(payload)
    except pydantic.ValidationError as e:
        return JSONResponse({"detail": _validation_detail(e)}, status_code=400)
    orchestrator: AnalysisOrchestrator = request.app.state.orchestrator
    return await orchestrator.analyze(body, Credentials.from_headers(request.headers), _request_id(request))


@app.get(
    "/api/session/{session_id}",
    tags=["sessions"],
    description="Fetch a session with its analysis and metrics from the owning domain.",
)
async def get_session(session_id: str, request: Request):
    lifecycle: SessionLifecycle = request.app.state.lifecycle
    return await lifecycle.get_session(session_id, Credentials.from_headers(request.headers))


@app.get(
    "/api/dashboard/recent-sessions",
    tags=["sessions"],
    description="Most recent completed sessions for the dashboard.",
)
async def recent_sessions(request: Request):
    lifecycle: SessionLifecycle = request.app.state.lifecycle
    return await lifecycle.recent_sessions(Credentials.from_headers(request.headers), _request_id(request))


@app.get("/api/demo/sessions", tags=["sessions"], description="Demo sessions held by this process, most recent first.")
async def demo_sessions(request: Request):
    lifecycle: SessionLifecycle = request.app.state.lifecycle
    return lifecycle.demo_sessions()


@app.get("/service-metrics", tags=["meta"], description="Lightweight service metrics for observability.")
async def service_metrics(request: Request):
    try:
        queue: AnalysisTaskQueue = request.app.state.analysis_queue
        cache: DemoSessionCache = request.app.state.demo_cache
        return {
            "queueDepth": queue.qsize(),
            "workerConcurrency": queue.concurrency if queue.started else 0,
            "demoCacheSize": len(cache),
            "failureCount": len(queue.failures),
        }
    except Exception:
        return {"queueDepth": None, "workerConcurrency": None, "demoCacheSize": None, "failureCount": None}


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema
    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )
    openapi_schema["tags"] = [
        {"name": "meta", "description": "Service metadata and liveness"},
        {"name": "sessions", "description": "Session lifecycle and views"},
        {"name": "analysis", "description": "Transcript metrics and coaching analysis"},
    ]
    openapi_schema["servers"] = [
        {"url": "http://localhost:8000", "description": "Local dev"}
    ]
    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi  # type: ignore[assignment]
