"""FastAPI adapter exposing the reconciliation engine over HTTP."""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from okrpilot.config import get_config
from okrpilot.errors import ConfigurationError, OkrPilotError
from okrpilot.models.selector import ModelCache
from okrpilot.reconcile import ReconcileEngine, fallback_scope
from okrpilot.records import WorkItem

logger = logging.getLogger(__name__)

app = FastAPI(title="okrpilot")


@app.on_event("startup")
def _startup() -> None:
    app.state.config = get_config()
    app.state.model_cache = ModelCache()


def _engine(request: Request) -> ReconcileEngine:
    state = request.app.state
    engine = getattr(state, "engine", None)
    if engine is not None:
        return engine
    config = getattr(state, "config", None) or get_config()
    cache = getattr(state, "model_cache", None) or ModelCache()
    state.model_cache = cache
    engine = ReconcileEngine.from_config(config, cache=cache)
    state.engine = engine
    return engine


def _parse_items(payload: dict) -> list[WorkItem] | None:
    raw = payload.get("okrs")
    if not isinstance(raw, list) or not raw:
        return None
    return [WorkItem.from_dict(entry) for entry in raw if isinstance(entry, dict)]


def _field(payload: dict, key: str) -> str:
    value = payload.get(key)
    return "" if value is None else str(value).strip()


def _error(exc: Exception) -> JSONResponse:
    status = 400 if isinstance(exc, ConfigurationError) else 500
    return JSONResponse({"error": str(exc)}, status_code=status)


@app.get("/health")
async def health():
    """Health check endpoint for monitoring."""
    return {"status": "healthy", "service": "okrpilot"}


@app.post("/api/ai/reconcile")
def reconcile_api(payload: dict, request: Request):
    items = _parse_items(payload)
    if not items:
        return JSONResponse({"error": "No OKRs provided."}, status_code=400)
    answers = payload.get("answers")
    if answers is not None and not isinstance(answers, (dict, list)):
        return JSONResponse({"error": "answers must be an object or a list."}, status_code=400)
    category = _field(payload, "category") or None
    try:
        updates = _engine(request).reconcile(items, scope_category=category, user_answers=answers)
    except OkrPilotError as exc:
        logger.error("Reconcile failed: %s", exc)
        return _error(exc)
    return {"updates": [u.to_dict() for u in updates]}


@app.post("/api/ai/scope")
def scope_api(payload: dict, request: Request):
    title = _field(payload, "title")
    if not title:
        return JSONResponse({"error": "Title is required."}, status_code=400)
    notes = _field(payload, "notes")
    try:
        scope = _engine(request).generate_scope_text(title, notes)
    except ConfigurationError as exc:
        return _error(exc)
    except OkrPilotError as exc:
        logger.warning("Scope generation failed, using fallback: %s", exc)
        scope = fallback_scope(title)
    return {"scope": scope}


@app.post("/api/ai/questions")
def questions_api(payload: dict, request: Request):
    items = _parse_items(payload)
    if not items:
        return JSONResponse({"error": "No OKRs provided."}, status_code=400)
    category = _field(payload, "category")
    if not category:
        return JSONResponse({"error": "Category is required."}, status_code=400)
    try:
        questions = _engine(request).generate_priority_questions(items, category)
    except ConfigurationError as exc:
        return _error(exc)
    return {"questions": [q.to_dict() for q in questions]}
