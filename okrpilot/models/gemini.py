"""Native Gemini API backend for okrpilot."""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, List

import httpx

from okrpilot.config import Config, DEFAULT_API_BASE
from okrpilot.errors import ModelDiscoveryFailed
from okrpilot.models.backend import CompletionResult, ModelDescriptor

logger = logging.getLogger(__name__)


def strip_model_prefix(name: str) -> str:
    return name[len("models/"):] if name.startswith("models/") else name


class GeminiClient:
    """Gemini ListModels / generateContent client using httpx."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_API_BASE,
        timeout: float = 120.0,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: Config) -> "GeminiClient":
        return cls(
            api_key=config.require_api_key(),
            base_url=config.api_base,
            timeout=float(config.timeout_seconds),
        )

    def list_models(self) -> List[ModelDescriptor]:
        models: List[ModelDescriptor] = []
        params: Dict[str, Any] = {"key": self.api_key}
        try:
            with httpx.Client(timeout=self.timeout) as client:
                while True:
                    response = client.get(f"{self.base_url}/models", params=params)
                    if response.status_code != 200:
                        raise ModelDiscoveryFailed(
                            f"Gemini ListModels failed: {response.text}",
                            body=response.text,
                        )
                    data = response.json()
                    for entry in data.get("models", []) or []:
                        name = entry.get("name")
                        if not name:
                            continue
                        models.append(ModelDescriptor(
                            name=str(name),
                            supported_capabilities=list(entry.get("supportedGenerationMethods") or []),
                        ))
                    token = data.get("nextPageToken")
                    if not token:
                        break
                    params = {"key": self.api_key, "pageToken": token}
        except httpx.HTTPError as exc:
            raise ModelDiscoveryFailed(f"Gemini ListModels failed: {exc}", body=str(exc)) from exc
        logger.debug("Gemini ListModels returned %d models", len(models))
        return models

    def generate(self, model_id: str, prompt: str, json_response: bool = False) -> CompletionResult:
        model_id = strip_model_prefix(model_id)
        url = f"{self.base_url}/models/{model_id}:generateContent"
        body: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        }
        if json_response:
            body["generationConfig"] = {"responseMimeType": "application/json"}

        start = time.perf_counter()
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(url, params={"key": self.api_key}, json=body)
        except httpx.TimeoutException:
            return CompletionResult(
                ok=False,
                status_code=0,
                error=f"Gemini API timeout after {self.timeout}s",
                duration_ms=(time.perf_counter() - start) * 1000,
            )
        except httpx.HTTPError as exc:
            return CompletionResult(
                ok=False,
                status_code=0,
                error=str(exc),
                duration_ms=(time.perf_counter() - start) * 1000,
            )

        duration_ms = (time.perf_counter() - start) * 1000
        if response.status_code != 200:
            return CompletionResult(
                ok=False,
                status_code=response.status_code,
                error=response.text,
                duration_ms=duration_ms,
            )

        data = response.json()
        candidates = data.get("candidates") or []
        parts: List[Dict[str, Any]] = []
        if candidates:
            parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "\n".join(str(part.get("text") or "") for part in parts)
        return CompletionResult(text=text, ok=True, status_code=200, duration_ms=duration_ms)
