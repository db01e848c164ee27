"""FastAPI application factory for the review session API.

Routes:
  POST /review/create         — validate a change plan and persist a pending session
  GET  /review/{id}           — session detail for the reviewer
  POST /review/{id}/approve   — pending → approved
  POST /review/{id}/apply     — approved → applied; needs an X-GitHub-Token header
  GET  /health

Every error response has the same shape:
  {"status": "error", "requestId": ..., "errorCode": ..., "message": ..., "details"?: ...}
"""

from __future__ import annotations

import importlib.metadata
import logging
import re
import time
import uuid
from typing import Any, Callable

from fastapi import Body, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from patchgate_core.config import DEFAULT_CONFIG
from patchgate_core.errors import (
    ErrorCode,
    MissingAuthError,
    PatchgateError,
    PayloadTooLargeError,
    PlanValidationError,
    SessionNotFoundError,
)
from patchgate_core.factory import is_valid_session_id, summarize_plan
from patchgate_core.gh.writer import GitHubWriter, VcsWriter
from patchgate_core.lifecycle import ApplyOrchestrator, ReviewSessionService
from patchgate_core.plan import parse_change_plan
from patchgate_core.ttl import effective_status, is_session_expired
from patchgate_store.models import ReviewSession
from patchgate_store.serializer import format_timestamp, session_to_dict

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "x-request-id"
GITHUB_TOKEN_HEADER = "X-GitHub-Token"

_REQUEST_ID_UNSAFE_RE = re.compile(r"[^a-zA-Z0-9\-_]")


def get_or_create_request_id(request: Request) -> str:
    """Echo a caller-supplied request id if it is sane, otherwise generate one."""
    existing = request.headers.get(REQUEST_ID_HEADER, "")
    if 0 < len(existing) <= 128:
        sanitized = _REQUEST_ID_UNSAFE_RE.sub("", existing)
        if sanitized:
            return sanitized
    return str(uuid.uuid4())


def build_error_body(request_id: str, code: ErrorCode, message: str, details: dict | None = None) -> dict:
    body: dict[str, Any] = {
        "status": "error",
        "requestId": request_id,
        "errorCode": code.value,
        "message": message,
    }
    if details:
        body["details"] = details
    return body


def _error_response(request: Request, err: PatchgateError) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None) or get_or_create_request_id(request)
    return JSONResponse(
        build_error_body(request_id, err.code, err.message, err.details),
        status_code=err.http_status,
        headers={REQUEST_ID_HEADER: request_id},
    )


def session_view(session: ReviewSession, now) -> dict:
    """Everything a reviewer needs; patch bodies are left out (the diffs cover them)."""
    view = session_to_dict(session)
    view.pop("patches")
    view["patchCount"] = len(session.patches)
    view["effectiveStatus"] = effective_status(session, now).value
    view["expired"] = is_session_expired(session, now)
    return view


class PayloadLimitMiddleware:
    """Answers PAYLOAD_TOO_LARGE for request bodies over ``max_bytes``.

    A declared Content-Length is checked up front. Bodies without one
    (chunked uploads) are buffered and counted as they arrive, then replayed
    to the app.
    """

    def __init__(self, app, max_bytes: int):
        self.app = app
        self.max_bytes = max_bytes

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        content_length = dict(scope.get("headers") or []).get(b"content-length", b"")
        if content_length.isdigit() and int(content_length) > self.max_bytes:
            await self._reject(scope, receive, send)
            return

        messages = []
        received = 0
        while True:
            message = await receive()
            messages.append(message)
            if message["type"] != "http.request":
                break
            received += len(message.get("body", b""))
            if received > self.max_bytes:
                await self._reject(scope, receive, send)
                return
            if not message.get("more_body", False):
                break

        async def replay():
            if messages:
                return messages.pop(0)
            return await receive()

        await self.app(scope, replay, send)

    async def _reject(self, scope, receive, send):
        err = PayloadTooLargeError()
        request_id = scope.get("state", {}).get("request_id") or str(uuid.uuid4())
        response = JSONResponse(
            build_error_body(request_id, err.code, err.message),
            status_code=err.http_status,
            headers={REQUEST_ID_HEADER: request_id},
        )
        await response(scope, receive, send)


def _version() -> str:
    try:
        return importlib.metadata.version("patchgate")
    except importlib.metadata.PackageNotFoundError:
        return "0.0.0"


def create_app(
    service: ReviewSessionService,
    writer_factory: Callable[[str], VcsWriter] | None = None,
    config: dict | None = None,
) -> FastAPI:
    """Build the API around an existing service.

    ``writer_factory`` turns the per-request GitHub token into a VcsWriter;
    by default it builds a GitHubWriter from ``config``.
    """
    config = {**DEFAULT_CONFIG, **(config or {})}
    max_payload = int(config["max_payload_bytes"])

    def _github_writer(token: str) -> VcsWriter:
        return GitHubWriter(
            token,
            timeout=int(config["github_timeout"]),
            message_prefix=config["commit_message_prefix"],
            scan_depth=int(config["commit_scan_depth"]),
        )

    make_writer = writer_factory or _github_writer

    app = FastAPI(title="patchgate", version=_version())
    app.state.service = service
    # Added before request_context, so it runs inside it and sees the request id.
    app.add_middleware(PayloadLimitMiddleware, max_bytes=max_payload)

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = get_or_create_request_id(request)
        request.state.request_id = request_id
        started = time.perf_counter()

        response = await call_next(request)

        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            "%s %s -> %d (%.1f ms) request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
            request_id,
        )
        return response

    @app.exception_handler(PatchgateError)
    async def handle_patchgate_error(request: Request, exc: PatchgateError):
        if exc.http_status >= 500:
            logger.warning("%s: %s", exc.code.value, exc.message)
        return _error_response(request, exc)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()]
        return _error_response(request, PlanValidationError(errors))

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error_response(request, PatchgateError())

    def _checked_id(session_id: str) -> str:
        if not is_valid_session_id(session_id):
            raise SessionNotFoundError(session_id)
        return session_id

    @app.get("/health")
    def health():
        return {"status": "ok", "version": _version()}

    @app.post("/review/create", status_code=201)
    def create_session(payload: Any = Body(...)):
        plan = parse_change_plan(payload)
        session = service.create(plan)
        return {
            "sessionId": session.session_id,
            "expiresAt": format_timestamp(session.expires_at),
            "summary": summarize_plan(session),
        }

    @app.get("/review/{session_id}")
    def get_session(session_id: str):
        session = service.get(_checked_id(session_id))
        return session_view(session, service.clock())

    @app.post("/review/{session_id}/approve")
    def approve_session(session_id: str):
        outcome = service.approve(_checked_id(session_id))
        return {
            "sessionId": outcome.session_id,
            "previousStatus": outcome.previous_status.value,
            "newStatus": outcome.new_status.value,
        }

    @app.post("/review/{session_id}/apply")
    def apply_session(
        session_id: str,
        github_token: str | None = Header(default=None, alias=GITHUB_TOKEN_HEADER),
    ):
        session_id = _checked_id(session_id)
        if not github_token:
            raise MissingAuthError(f"{GITHUB_TOKEN_HEADER} header is required to apply a session")
        result = ApplyOrchestrator(service, make_writer(github_token)).apply(session_id)
        return {
            "sessionId": result.session_id,
            "applied": result.applied,
            "commitShas": list(result.commit_shas),
            "idempotent": result.idempotent,
        }

    return app
