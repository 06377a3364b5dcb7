"""Text-completion contract the reconciliation engine calls through."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Protocol

GENERATE_CONTENT = "generateContent"


@dataclass
class ModelDescriptor:
    name: str
    supported_capabilities: List[str] = field(default_factory=list)

    def supports(self, capability: str) -> bool:
        return capability in self.supported_capabilities


@dataclass
class CompletionResult:
    """Result from a completion call."""
    text: str = ""
    ok: bool = True
    status_code: int = 200
    error: str | None = None
    duration_ms: float = 0.0


class CompletionBackend(Protocol):
    def list_models(self) -> List[ModelDescriptor]:
        """Return available models; raise ModelDiscoveryFailed on failure."""
        ...

    def generate(self, model_id: str, prompt: str, json_response: bool = False) -> CompletionResult:
        ...
