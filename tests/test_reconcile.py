"""Tests for okrpilot.reconcile module."""
import json
import tempfile
import unittest
from datetime import date
from pathlib import Path

from okrpilot.audit import AuditLog
from okrpilot.config import Config
from okrpilot.errors import CompletionFailed, MalformedResponse, ModelDiscoveryFailed
from okrpilot.models.backend import CompletionResult, ModelDescriptor
from okrpilot.models.selector import ModelCache
from okrpilot.reconcile import (
    ReconcileEngine,
    fallback_update,
    normalize_update,
    should_retry_with_discovery,
)
from okrpilot.records import UpdateRecord, WorkItem

TODAY = date(2025, 3, 1)


class FakeBackend:
    """Scripted completion backend recording every call."""

    def __init__(self, responses=None, models=None):
        self.responses = list(responses or [])
        self.models = models if models is not None else [
            ModelDescriptor("models/gemini-1.5-pro", ["generateContent"]),
            ModelDescriptor("models/gemini-2.0-flash", ["generateContent"]),
        ]
        self.generate_calls = []
        self.list_calls = 0

    def list_models(self):
        self.list_calls += 1
        return list(self.models)

    def generate(self, model_id, prompt, json_response=False):
        self.generate_calls.append((model_id, prompt, json_response))
        response = self.responses.pop(0) if self.responses else ""
        if isinstance(response, CompletionResult):
            return response
        return CompletionResult(text=response)


def _item(item_id, **kwargs):
    defaults = {
        "title": f"Item {item_id}",
        "scope": f"scope {item_id}",
        "deadline": "2025-06-01",
        "category": "Uncategorized",
        "priority": "P3",
    }
    defaults.update(kwargs)
    return WorkItem(id=item_id, **defaults)


def _not_found():
    return CompletionResult(ok=False, status_code=404, error="models/gemini-2.5-flash is not found for API version v1beta")


class TestNormalizeUpdate(unittest.TestCase):
    def test_invalid_priority_uses_original(self):
        update = normalize_update({"priority": "P9"}, _item("1", priority="P2"))
        self.assertEqual(update.priority, "P2")

    def test_invalid_priority_without_valid_original_is_p3(self):
        update = normalize_update({"priority": "P9"}, _item("1", priority="urgent"))
        self.assertEqual(update.priority, "P3")

    def test_existing_category_is_authoritative(self):
        update = normalize_update({"category": "Sales"}, _item("1", category="Engineering"))
        self.assertEqual(update.category, "Engineering")

    def test_placeholder_category_is_replaced(self):
        update = normalize_update({"category": "Growth"}, _item("1"))
        self.assertEqual(update.category, "Growth")

    def test_missing_fields_keep_original(self):
        update = normalize_update({"scope": "  ", "deadline": None}, _item("1"))
        self.assertEqual(update.scope, "scope 1")
        self.assertEqual(update.deadline, "2025-06-01")

    def test_fields_are_coerced_to_strings(self):
        update = normalize_update({"scope": 42, "deadline": 20250701, "id": 99}, _item("1"))
        self.assertEqual(update.scope, "42")
        self.assertEqual(update.deadline, "20250701")
        self.assertEqual(update.id, "1")

    def test_missing_deadline_everywhere_defaults_two_weeks_out(self):
        update = normalize_update({}, _item("1", deadline=""), today=TODAY)
        self.assertEqual(update.deadline, "2025-03-15")


class TestFallbackUpdate(unittest.TestCase):
    def test_fallback_defaults(self):
        update = fallback_update(_item("1", category="", priority="", deadline=""), today=TODAY)
        self.assertEqual(update, UpdateRecord("1", "General", "P3", "scope 1", "2025-03-15"))

    def test_fallback_keeps_original_values(self):
        update = fallback_update(_item("1", category="Strategy", priority="P1"), today=TODAY)
        self.assertEqual(update, UpdateRecord("1", "Strategy", "P1", "scope 1", "2025-06-01"))


class TestShouldRetry(unittest.TestCase):
    def test_not_found_404(self):
        self.assertTrue(should_retry_with_discovery(404, "Model is NOT FOUND"))

    def test_400_mentioning_list_models(self):
        self.assertTrue(should_retry_with_discovery(400, "Call ListModels to see available models"))

    def test_other_status(self):
        self.assertFalse(should_retry_with_discovery(500, "not found"))

    def test_unrelated_400(self):
        self.assertFalse(should_retry_with_discovery(400, "Invalid JSON payload"))


class TestReconcile(unittest.TestCase):
    def test_scenario_adopts_category_for_uncategorized(self):
        backend = FakeBackend([json.dumps([{
            "id": "1", "category": "Engineering", "priority": "P1",
            "scope": "Ship X v1", "deadline": "2025-06-10",
        }])])
        engine = ReconcileEngine(backend)
        item = WorkItem(id="1", title="Ship X", priority="P3", category="Uncategorized", scope="s", deadline="2025-06-01")

        updates = engine.reconcile([item], today=TODAY)

        self.assertEqual(updates, [UpdateRecord("1", "Engineering", "P1", "Ship X v1", "2025-06-10")])
        model_id, prompt, json_response = backend.generate_calls[0]
        self.assertEqual(model_id, "gemini-2.5-flash")
        self.assertTrue(json_response)
        self.assertIn("\"id\": \"1\"", prompt)

    def test_cardinality_and_order_preserved(self):
        items = [_item(str(i)) for i in range(5)]
        response = json.dumps({"updates": [
            {"id": "4", "priority": "P1"},
            {"id": "2", "priority": "P2"},
            {"id": "zz", "priority": "P1"},
            "garbage",
            {"id": "0", "priority": "P5"},
        ]})
        updates = ReconcileEngine(FakeBackend([response])).reconcile(items, today=TODAY)
        self.assertEqual([u.id for u in updates], ["0", "1", "2", "3", "4"])
        self.assertEqual([u.priority for u in updates], ["P5", "P3", "P2", "P3", "P1"])

    def test_priority_domain_closure(self):
        items = [_item("a", priority="P2"), _item("b", priority="")]
        response = json.dumps([{"id": "a", "priority": "P9"}, {"id": "b", "priority": "high"}])
        updates = ReconcileEngine(FakeBackend([response])).reconcile(items)
        self.assertEqual([u.priority for u in updates], ["P2", "P3"])

    def test_category_stickiness(self):
        response = json.dumps([{"id": "1", "category": "Sales", "priority": "P1"}])
        updates = ReconcileEngine(FakeBackend([response])).reconcile([_item("1", category="Engineering")])
        self.assertEqual(updates[0].category, "Engineering")

    def test_empty_response_falls_back(self):
        items = [_item("1", category="Growth", priority="P2"), _item("2", category="", priority="", deadline="")]
        updates = ReconcileEngine(FakeBackend([""])).reconcile(items, today=TODAY)
        self.assertEqual(updates, [fallback_update(item, TODAY) for item in items])
        self.assertEqual(updates[1], UpdateRecord("2", "General", "P3", "scope 2", "2025-03-15"))

    def test_unparseable_response_falls_back(self):
        items = [_item("1")]
        updates = ReconcileEngine(FakeBackend(["I am unable to help with that."])).reconcile(items, today=TODAY)
        self.assertEqual(updates, [fallback_update(items[0], TODAY)])

    def test_deeply_nested_response_falls_back(self):
        items = [_item("1")]
        response = "[" * 100000 + "]" * 100000
        updates = ReconcileEngine(FakeBackend([response])).reconcile(items, today=TODAY)
        self.assertEqual(updates, [fallback_update(items[0], TODAY)])

    def test_free_text_answers_reach_prompt(self):
        backend = FakeBackend(["[]"])
        updates = ReconcileEngine(backend).reconcile([_item("1")], user_answers=["Item 1 is most urgent", 7])
        self.assertEqual([u.id for u in updates], ["1"])
        self.assertIn("- Item 1 is most urgent", backend.generate_calls[0][1])

    def test_strict_mode_raises_on_unparseable(self):
        engine = ReconcileEngine(FakeBackend(["nope"]), strict=True)
        with self.assertRaises(MalformedResponse):
            engine.reconcile([_item("1")])

    def test_empty_batch_skips_model(self):
        backend = FakeBackend()
        self.assertEqual(ReconcileEngine(backend).reconcile([]), [])
        self.assertEqual(backend.generate_calls, [])

    def test_scope_category_and_answers_reach_prompt(self):
        backend = FakeBackend(["[]"])
        ReconcileEngine(backend).reconcile(
            [_item("1")],
            scope_category="Growth",
            user_answers={"Which is most urgent?": "Item 1"},
        )
        prompt = backend.generate_calls[0][1]
        self.assertIn("\"Growth\" category", prompt)
        self.assertIn("- Which is most urgent?: Item 1", prompt)

    def test_placeholder_categories_are_configurable(self):
        response = json.dumps([{"id": "1", "category": "Product"}])
        engine = ReconcileEngine(FakeBackend([response]), placeholder_categories=("Inbox",))
        updates = engine.reconcile([_item("1", category="Inbox")])
        self.assertEqual(updates[0].category, "Product")


class TestInvokeCompletion(unittest.TestCase):
    def test_override_never_lists_models_even_on_404(self):
        backend = FakeBackend([_not_found()])
        engine = ReconcileEngine(backend, model_override="custom-model")
        with self.assertRaises(CompletionFailed) as ctx:
            engine.reconcile([_item("1")])
        self.assertEqual(backend.list_calls, 0)
        self.assertEqual(ctx.exception.status_code, 404)
        self.assertEqual([call[0] for call in backend.generate_calls], ["custom-model"])

    def test_model_not_found_retries_once_with_discovery(self):
        response = json.dumps([{"id": "1", "priority": "P1"}])
        backend = FakeBackend([_not_found(), response])
        cache = ModelCache()
        engine = ReconcileEngine(backend, cache=cache)

        updates = engine.reconcile([_item("1")])

        self.assertEqual(updates[0].priority, "P1")
        self.assertEqual([call[0] for call in backend.generate_calls], ["gemini-2.5-flash", "gemini-2.0-flash"])
        self.assertEqual(backend.list_calls, 1)
        self.assertEqual(cache.get(), "gemini-2.0-flash")

    def test_cached_model_used_on_later_calls(self):
        backend = FakeBackend(["[]", "[]"])
        cache = ModelCache()
        cache.set("gemini-2.0-flash-lite")
        engine = ReconcileEngine(backend, cache=cache)
        engine.reconcile([_item("1")])
        self.assertEqual(backend.generate_calls[0][0], "gemini-2.0-flash-lite")
        self.assertEqual(backend.list_calls, 0)

    def test_second_failure_propagates(self):
        backend = FakeBackend([_not_found(), CompletionResult(ok=False, status_code=500, error="backend down")])
        engine = ReconcileEngine(backend)
        with self.assertRaises(CompletionFailed) as ctx:
            engine.reconcile([_item("1")])
        self.assertEqual(ctx.exception.body, "backend down")
        self.assertEqual(len(backend.generate_calls), 2)

    def test_other_failures_are_not_retried(self):
        backend = FakeBackend([CompletionResult(ok=False, status_code=503, error="overloaded")])
        with self.assertRaises(CompletionFailed):
            ReconcileEngine(backend).reconcile([_item("1")])
        self.assertEqual(len(backend.generate_calls), 1)
        self.assertEqual(backend.list_calls, 0)

    def test_discovery_failure_during_retry_propagates(self):
        class FailingDiscovery(FakeBackend):
            def list_models(self):
                raise ModelDiscoveryFailed("Gemini ListModels failed: denied", body="denied")

        backend = FailingDiscovery([_not_found()])
        with self.assertRaises(ModelDiscoveryFailed):
            ReconcileEngine(backend).reconcile([_item("1")])

    def test_without_default_model_discovers_first(self):
        backend = FakeBackend(["[]"])
        ReconcileEngine(backend, default_model="").reconcile([_item("1")])
        self.assertEqual(backend.list_calls, 1)
        self.assertEqual(backend.generate_calls[0][0], "gemini-2.0-flash")


class TestFromConfig(unittest.TestCase):
    def test_from_config_wires_options_and_audit(self):
        with tempfile.TemporaryDirectory() as tmp:
            config = Config({
                "data_dir": tmp,
                "gemini": {"api_key": "k", "model": "pinned-model"},
                "reconcile": {"strict": True, "default_deadline_days": 7},
                "audit": {"enabled": True},
            })
            backend = FakeBackend([json.dumps([{"id": "1"}])])
            engine = ReconcileEngine.from_config(config, backend=backend)
            self.assertEqual(engine.model_override, "pinned-model")
            self.assertTrue(engine.strict)
            self.assertEqual(engine.deadline_days, 7)

            engine.reconcile([_item("1")])

            events = [entry["event"] for entry in AuditLog(Path(tmp) / "audit.jsonl").read()]
            self.assertEqual(events, ["reconcile.start", "model.call", "reconcile.complete"])


if __name__ == "__main__":
    unittest.main()
