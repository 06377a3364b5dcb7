"""Reconciliation engine: ask the model for updates and merge them safely.

The model is treated as an untrusted oracle. Whatever it returns, the output of
``ReconcileEngine.reconcile`` has one record per input item, in input order,
with the input ids, a valid priority and a non-empty deadline.
"""
from __future__ import annotations

import logging
import re
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence

from okrpilot.audit import AuditLog
from okrpilot.categories import GENERAL_CATEGORY, UNCATEGORIZED, is_placeholder_category, normalize_priority
from okrpilot.config import Config, DEFAULT_GEMINI_MODEL
from okrpilot.errors import CompletionFailed, MalformedResponse
from okrpilot.extraction import extract_structured_payload
from okrpilot.models.backend import CompletionBackend
from okrpilot.models.selector import ModelCache, ModelSelector
from okrpilot.prompts import (
    MAX_QUESTIONS,
    Answers,
    build_questions_prompt,
    build_reconcile_prompt,
    build_scope_prompt,
)
from okrpilot.records import DEFAULT_DEADLINE_DAYS, PriorityQuestion, UpdateRecord, WorkItem, default_deadline

logger = logging.getLogger(__name__)

RETRY_STATUSES = {400, 404}
RETRY_MARKERS = ("not found", "not supported", "listmodels")

CANNED_QUESTIONS = (
    PriorityQuestion(id="urgency", question="Which of these OKRs is the most urgent right now, and why?"),
    PriorityQuestion(id="complexity", question="Which OKRs are the most complex or need the most effort to finish?"),
    PriorityQuestion(id="deadlines", question="Do any of these OKRs have fixed external deadlines you cannot move?"),
)


def should_retry_with_discovery(status_code: int, error_text: str) -> bool:
    """True when the failure looks like the requested model does not exist."""
    if status_code not in RETRY_STATUSES:
        return False
    normalized = (error_text or "").lower()
    return any(marker in normalized for marker in RETRY_MARKERS)


def fallback_scope(title: str) -> str:
    return f"Deliver {title} with clear owner, measurable output, and stakeholder sign-off."


def _present(value: Any) -> bool:
    return value is not None and str(value).strip() != ""


def fallback_update(
    item: WorkItem,
    today: date | None = None,
    deadline_days: int = DEFAULT_DEADLINE_DAYS,
) -> UpdateRecord:
    """Record synthesized without model input."""
    return UpdateRecord(
        id=item.id,
        category=item.category if _present(item.category) else GENERAL_CATEGORY,
        priority=normalize_priority(item.priority),
        scope=str(item.scope or ""),
        deadline=item.deadline if _present(item.deadline) else default_deadline(today, deadline_days),
    )


def normalize_update(
    candidate: Dict[str, Any],
    original: WorkItem,
    placeholders: Sequence[str] = (UNCATEGORIZED,),
    today: date | None = None,
    deadline_days: int = DEFAULT_DEADLINE_DAYS,
) -> UpdateRecord:
    """Merge one model candidate onto its original item.

    A category the original already has (anything but a placeholder) wins over
    the model's suggestion.
    """
    if is_placeholder_category(original.category, placeholders) and _present(candidate.get("category")):
        category = str(candidate.get("category")).strip()
    elif _present(original.category):
        category = original.category
    else:
        category = GENERAL_CATEGORY

    if _present(candidate.get("scope")):
        scope = str(candidate.get("scope"))
    else:
        scope = str(original.scope or "")

    if _present(candidate.get("deadline")):
        deadline = str(candidate.get("deadline")).strip()
    elif _present(original.deadline):
        deadline = original.deadline
    else:
        deadline = default_deadline(today, deadline_days)

    return UpdateRecord(
        id=original.id,
        category=category,
        priority=normalize_priority(candidate.get("priority"), original.priority),
        scope=scope,
        deadline=deadline,
    )


def _index_candidates(entries: Iterable[Any]) -> Dict[str, Dict[str, Any]]:
    by_id: Dict[str, Dict[str, Any]] = {}
    for entry in entries:
        if not isinstance(entry, dict) or entry.get("id") is None:
            continue
        by_id.setdefault(str(entry["id"]), entry)
    return by_id


_BULLET = re.compile(r"^(?:[-*•>]|\d+[.)])\s+")
_WRAPPERS = ("**", "__", "*", "_", '"', "'", "`")


def _unwrap(text: str) -> str:
    """Remove emphasis or quotes only when they enclose the whole line."""
    changed = True
    while changed:
        changed = False
        for mark in _WRAPPERS:
            if len(text) > 2 * len(mark) and text.startswith(mark) and text.endswith(mark):
                text = text[len(mark):-len(mark)].strip()
                changed = True
                break
    return text


def _first_line(text: str) -> str:
    for line in text.splitlines():
        cleaned = _unwrap(_BULLET.sub("", line.strip()).strip())
        if cleaned:
            return cleaned
    return ""


class ReconcileEngine:
    def __init__(
        self,
        backend: CompletionBackend,
        model_override: str | None = None,
        default_model: str | None = DEFAULT_GEMINI_MODEL,
        cache: ModelCache | None = None,
        audit: AuditLog | None = None,
        strict: bool = False,
        deadline_days: int = DEFAULT_DEADLINE_DAYS,
        placeholder_categories: Sequence[str] = (UNCATEGORIZED,),
    ) -> None:
        self.backend = backend
        self.model_override = (model_override or "").strip() or None
        self.default_model = (default_model or "").strip() or None
        self.selector = ModelSelector(backend, cache)
        self.audit = audit
        self.strict = strict
        self.deadline_days = deadline_days
        self.placeholder_categories = tuple(placeholder_categories)

    @classmethod
    def from_config(
        cls,
        config: Config,
        backend: CompletionBackend | None = None,
        cache: ModelCache | None = None,
    ) -> "ReconcileEngine":
        if backend is None:
            from okrpilot.models.gemini import GeminiClient
            backend = GeminiClient.from_config(config)
        audit = AuditLog(config.audit_path) if config.audit_enabled else None
        return cls(
            backend,
            model_override=config.model_override,
            default_model=config.default_model,
            cache=cache,
            audit=audit,
            strict=config.strict,
            deadline_days=config.default_deadline_days,
            placeholder_categories=config.placeholder_categories,
        )

    def _log(self, event: str, data: Dict[str, Any]) -> None:
        if self.audit:
            self.audit.log(event, data)

    def _initial_model(self) -> str:
        if self.model_override:
            return self.selector.resolve_model(self.model_override)
        cached = self.selector.cache.get()
        if cached:
            return cached
        if self.default_model:
            return self.default_model
        return self.selector.resolve_model()

    def _discovered_model(self, failed_model: str) -> str:
        if self.selector.cache.get() == failed_model:
            self.selector.cache.clear()
        return self.selector.resolve_model()

    def invoke_completion(self, prompt: str, json_response: bool = True) -> str:
        """Run one completion, retrying once with a discovered model on model-not-found."""
        model_id = self._initial_model()
        result = self.backend.generate(model_id, prompt, json_response=json_response)
        self._log("model.call", {
            "model_id": model_id,
            "ok": result.ok,
            "status_code": result.status_code,
            "duration_ms": round(result.duration_ms, 2),
        })

        if not result.ok and not self.model_override and should_retry_with_discovery(result.status_code, result.error or ""):
            retry_model = self._discovered_model(model_id)
            logger.warning("Model %s unavailable (HTTP %s), retrying with %s", model_id, result.status_code, retry_model)
            self._log("model.retry", {"from": model_id, "to": retry_model, "status_code": result.status_code})
            model_id = retry_model
            result = self.backend.generate(model_id, prompt, json_response=json_response)
            self._log("model.call", {
                "model_id": model_id,
                "ok": result.ok,
                "status_code": result.status_code,
                "duration_ms": round(result.duration_ms, 2),
            })

        if not result.ok:
            body = result.error or ""
            raise CompletionFailed(
                f"Gemini API request failed: {body}",
                status_code=result.status_code,
                body=body,
            )
        return result.text or ""

    def reconcile(
        self,
        items: Sequence[WorkItem],
        scope_category: Optional[str] = None,
        user_answers: Answers | None = None,
        today: date | None = None,
    ) -> List[UpdateRecord]:
        items = list(items)
        if not items:
            return []
        self._log("reconcile.start", {"count": len(items), "category": scope_category})
        prompt = build_reconcile_prompt(items, scope_category, user_answers, today=today)
        text = self.invoke_completion(prompt, json_response=True)

        parsed = extract_structured_payload(text, keys=("updates",)) if text.strip() else None
        if parsed is None:
            if self.strict:
                raise MalformedResponse("Model response did not contain a parseable update list.")
            logger.warning("Unusable model response for %d items; using fallback updates", len(items))
            self._log("reconcile.fallback", {"count": len(items), "reason": "empty" if not text.strip() else "unparseable"})
            return [fallback_update(item, today, self.deadline_days) for item in items]

        by_id = _index_candidates(parsed)
        updates: List[UpdateRecord] = []
        missing = 0
        for item in items:
            candidate = by_id.get(str(item.id))
            if candidate is None:
                missing += 1
                updates.append(fallback_update(item, today, self.deadline_days))
                continue
            updates.append(normalize_update(
                candidate,
                item,
                placeholders=self.placeholder_categories,
                today=today,
                deadline_days=self.deadline_days,
            ))
        if missing:
            logger.warning("Model response omitted %d of %d items", missing, len(items))
        self._log("reconcile.complete", {"count": len(updates), "missing": missing})
        return updates

    def generate_scope_text(self, title: str, notes: str = "") -> str:
        text = self.invoke_completion(build_scope_prompt(title, notes), json_response=False)
        line = _first_line(text)
        return line or fallback_scope(title)

    def generate_priority_questions(self, items: Sequence[WorkItem], category: str) -> List[PriorityQuestion]:
        """Clarifying questions for a reprioritization; canned questions on any failure."""
        try:
            text = self.invoke_completion(build_questions_prompt(items, category), json_response=True)
        except Exception:
            logger.warning("Question generation failed; using canned questions", exc_info=True)
            return list(CANNED_QUESTIONS)

        parsed = extract_structured_payload(text, keys=("questions",))
        questions: List[PriorityQuestion] = []
        for entry in parsed or []:
            if isinstance(entry, dict):
                question = entry.get("question")
                qid = entry.get("id")
            else:
                question, qid = entry, None
            if not _present(question):
                continue
            questions.append(PriorityQuestion(
                id=str(qid) if _present(qid) else f"q{len(questions) + 1}",
                question=str(question).strip(),
            ))
            if len(questions) >= MAX_QUESTIONS:
                break
        if not questions:
            return list(CANNED_QUESTIONS)
        return questions
