"""Model selection: explicit override, cached choice, or discovery + scoring."""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from okrpilot.errors import NoModelsAvailable
from okrpilot.models.backend import GENERATE_CONTENT, CompletionBackend
from okrpilot.models.gemini import strip_model_prefix

logger = logging.getLogger(__name__)


def score_model_name(model_name: str) -> int:
    n = model_name.lower()
    score = 0
    if "gemini" in n:
        score += 10
    if "2" in n:
        score += 6
    if "flash" in n:
        score += 5
    if "lite" in n:
        score += 1
    if "exp" in n:
        score -= 2
    return score


def rank_model_names(names: Iterable[str]) -> List[str]:
    """Best first; equal scores keep their input order."""
    return sorted(names, key=score_model_name, reverse=True)


class ModelCache:
    """Holds the discovered model id for the lifetime of this object."""

    def __init__(self) -> None:
        self._value: Optional[str] = None

    def get(self) -> Optional[str]:
        return self._value

    def set(self, model_id: str) -> None:
        self._value = model_id

    def clear(self) -> None:
        self._value = None


class ModelSelector:
    def __init__(self, backend: CompletionBackend, cache: ModelCache | None = None) -> None:
        self.backend = backend
        self.cache = cache if cache is not None else ModelCache()

    def resolve_model(self, explicit_override: str | None = None) -> str:
        if explicit_override and explicit_override.strip():
            return explicit_override.strip()
        cached = self.cache.get()
        if cached:
            return cached
        chosen = self.discover()
        self.cache.set(chosen)
        return chosen

    def discover(self) -> str:
        """Ask the backend for its models and pick the best-scoring generator."""
        descriptors = self.backend.list_models()
        candidates = [
            strip_model_prefix(d.name)
            for d in descriptors
            if d.supports(GENERATE_CONTENT)
        ]
        if not candidates:
            raise NoModelsAvailable("No Gemini models available that support generateContent.")
        chosen = rank_model_names(candidates)[0]
        logger.info("Discovered model %s from %d candidates", chosen, len(candidates))
        return chosen
