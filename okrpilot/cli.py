"""Command line interface for okrpilot."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, List

from okrpilot.config import Config, get_config
from okrpilot.errors import ConfigurationError, OkrPilotError
from okrpilot.models.gemini import GeminiClient, strip_model_prefix
from okrpilot.models.backend import GENERATE_CONTENT
from okrpilot.models.selector import rank_model_names, score_model_name
from okrpilot.reconcile import ReconcileEngine
from okrpilot.records import WorkItem, apply_updates, complete_work_item


def _print(obj: Any) -> None:
    print(json.dumps(obj, indent=2))


def _load_items(path: str) -> List[WorkItem]:
    data = json.loads(Path(path).read_text())
    if isinstance(data, dict):
        data = data.get("okrs") or data.get("active") or []
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a JSON array of OKRs")
    return [WorkItem.from_dict(entry) for entry in data if isinstance(entry, dict)]


def _engine(config: Config) -> ReconcileEngine:
    return ReconcileEngine.from_config(config)


def cmd_reconcile(args: argparse.Namespace, config: Config) -> None:
    items = _load_items(args.input)
    answers = json.loads(Path(args.answers).read_text()) if args.answers else None
    updates = _engine(config).reconcile(items, scope_category=args.category, user_answers=answers)
    if args.apply:
        _print({"okrs": [item.to_prompt_dict() for item in apply_updates(items, updates)]})
        return
    _print({"updates": [u.to_dict() for u in updates]})


def cmd_scope(args: argparse.Namespace, config: Config) -> None:
    scope = _engine(config).generate_scope_text(args.title, args.notes or "")
    _print({"scope": scope})


def cmd_questions(args: argparse.Namespace, config: Config) -> None:
    items = _load_items(args.input)
    questions = _engine(config).generate_priority_questions(items, args.category)
    _print({"questions": [q.to_dict() for q in questions]})


def cmd_complete(args: argparse.Namespace, config: Config) -> None:
    items = {item.id: item for item in _load_items(args.input)}
    if args.id not in items:
        raise ValueError(f"No OKR with id {args.id!r} in {args.input}")
    _print(complete_work_item(items[args.id], args.completed_at).to_dict())


def cmd_models(args: argparse.Namespace, config: Config) -> None:
    client = GeminiClient.from_config(config)
    names = [
        strip_model_prefix(d.name)
        for d in client.list_models()
        if d.supports(GENERATE_CONTENT)
    ]
    _print([
        {"model": name, "score": score_model_name(name)}
        for name in rank_model_names(names)
    ])


def cmd_serve(args: argparse.Namespace, config: Config) -> None:
    import uvicorn

    host = args.host or config.server.get("host", "127.0.0.1")
    port = args.port or int(config.server.get("port", 8095))
    uvicorn.run("okrpilot.server:app", host=host, port=port)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="okrpilot")
    parser.add_argument("--verbose", "-v", action="store_true")
    sub = parser.add_subparsers(dest="command")

    reconcile = sub.add_parser("reconcile", help="Recategorize, reprioritize and re-date OKRs")
    reconcile.add_argument("--input", required=True, help="JSON file with an array of OKRs")
    reconcile.add_argument("--category")
    reconcile.add_argument("--answers", help="JSON file with answers to prioritization questions")
    reconcile.add_argument("--apply", action="store_true", help="Print the OKRs with updates merged in")

    scope = sub.add_parser("scope", help="Generate a scope sentence for a new OKR")
    scope.add_argument("--title", required=True)
    scope.add_argument("--notes")

    questions = sub.add_parser("questions", help="Ask clarifying questions before reprioritizing")
    questions.add_argument("--input", required=True)
    questions.add_argument("--category", required=True)

    complete = sub.add_parser("complete", help="Mark an OKR complete and report days early or late")
    complete.add_argument("--input", required=True)
    complete.add_argument("--id", required=True)
    complete.add_argument("--completed-at", help="ISO-8601 timestamp, defaults to now")

    models = sub.add_parser("models")
    models_sub = models.add_subparsers(dest="models_cmd")
    models_sub.add_parser("list")

    serve = sub.add_parser("serve")
    serve.add_argument("--host")
    serve.add_argument("--port", type=int)

    return parser


COMMANDS = {
    "reconcile": cmd_reconcile,
    "scope": cmd_scope,
    "questions": cmd_questions,
    "complete": cmd_complete,
    "models": cmd_models,
    "serve": cmd_serve,
}


def main(argv: List[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    handler = COMMANDS.get(args.command or "")
    if handler is None:
        parser.print_help()
        return 0
    try:
        handler(args, get_config())
    except ConfigurationError as exc:
        print(f"[okrpilot] configuration error: {exc}", file=sys.stderr)
        return 2
    except (OkrPilotError, OSError, ValueError) as exc:
        print(f"[okrpilot] {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
