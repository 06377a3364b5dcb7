"""Prompt templates for reconciliation and the auxiliary generators."""
from __future__ import annotations

import json
from datetime import date
from typing import Dict, Optional, Sequence, Union

from okrpilot.categories import BROAD_CATEGORIES, PRIORITIES, UNCATEGORIZED
from okrpilot.records import WorkItem

MAX_QUESTIONS = 4

Answers = Union[str, Dict[str, str], Sequence[Union[str, Dict[str, str]]]]


def _serialize(items: Sequence[WorkItem]) -> str:
    return json.dumps([item.to_prompt_dict() for item in items], ensure_ascii=False)


def _format_answers(answers: Answers) -> list[str]:
    """Render answers as prompt lines. Free-text strings become bare lines; anything else is ignored."""
    if isinstance(answers, str):
        answers = [answers]
    elif isinstance(answers, dict):
        answers = [{"question": key, "answer": value} for key, value in answers.items()]
    lines = []
    for entry in answers:
        if isinstance(entry, str):
            if entry.strip():
                lines.append(f"- {entry.strip()}")
        elif isinstance(entry, dict):
            question = str(entry.get("question") or entry.get("id") or "")
            answer = str(entry.get("answer") or "")
            if answer.strip():
                lines.append(f"- {question}: {answer}")
    return lines


def build_reconcile_prompt(
    items: Sequence[WorkItem],
    scope_category: Optional[str] = None,
    user_answers: Answers | None = None,
    today: date | None = None,
) -> str:
    today = today or date.today()
    lines = [
        "You are an OKR operations assistant.",
        "Given a set of active OKRs, return JSON array only.",
        "Each array element must be an object with exactly these fields: "
        f"id, category, priority({PRIORITIES[0]}-{PRIORITIES[-1]}), scope, deadline(YYYY-MM-DD).",
        f"Allowed categories: {', '.join(BROAD_CATEGORIES)}.",
        "Goals:",
        f"- Categorize each OKR whose category is \"{UNCATEGORIZED}\" into one of the allowed categories.",
        f"- Keep every category other than \"{UNCATEGORIZED}\" exactly as given.",
        "- Prioritize all OKRs relative to each other.",
        "- Refine scope to be concise and measurable.",
        "- Recalculate each deadline if necessary, based on priority, scope size, and current date.",
        "- Keep deadlines realistic and ensure they are not in the past.",
        f"Current date: {today.isoformat()}.",
    ]
    if scope_category:
        lines.append(f"All OKRs below belong to the \"{scope_category}\" category; prioritize them within it.")
    if user_answers:
        answer_lines = _format_answers(user_answers)
        if answer_lines:
            lines.append("The user answered these prioritization questions:")
            lines.extend(answer_lines)
    lines.append("Keep same number of items as input and keep ids unchanged.")
    lines.append(f"Input OKRs: {_serialize(items)}")
    return "\n".join(lines)


def build_scope_prompt(title: str, notes: str = "") -> str:
    lines = [
        "You are an OKR operations assistant.",
        "Write a single-sentence scope for the OKR below.",
        "The scope must be concise, measurable, and name the expected outcome.",
        "Reply with the sentence only, no preamble or formatting.",
        f"Title: {title}",
    ]
    if notes.strip():
        lines.append(f"Notes: {notes.strip()}")
    return "\n".join(lines)


def build_questions_prompt(items: Sequence[WorkItem], category: str) -> str:
    return "\n".join([
        "You are an OKR operations assistant.",
        f"The user is about to reprioritize their \"{category}\" OKRs.",
        f"Ask at most {MAX_QUESTIONS} short clarifying questions whose answers would change the priority order.",
        "Return JSON only, shaped as {\"questions\": [{\"id\": \"q1\", \"question\": \"...\"}]}.",
        f"Input OKRs: {_serialize(items)}",
    ])
