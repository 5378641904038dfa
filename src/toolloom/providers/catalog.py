"""Static model catalogs and helpers for shaping live catalog responses."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List

from toolloom.models.chat_model import ModelInfo


OPENAI_DEFAULT_MODEL = "gpt-4"
ANTHROPIC_DEFAULT_MODEL = "claude-sonnet-4-20250514"
OLLAMA_DEFAULT_MODEL = "llama2"
COPILOT_DEFAULT_MODEL = "gpt-4o"

OPENAI_MODELS = [
    ModelInfo(id="gpt-4o", display_name="GPT-4o"),
    ModelInfo(id="gpt-4o-mini", display_name="GPT-4o mini"),
    ModelInfo(id="gpt-4", display_name="GPT-4"),
    ModelInfo(id="o3-mini", display_name="o3-mini"),
]

ANTHROPIC_MODELS = [
    ModelInfo(id="claude-sonnet-4-20250514", display_name="Claude Sonnet 4"),
    ModelInfo(id="claude-opus-4-20250514", display_name="Claude Opus 4"),
    ModelInfo(id="claude-haiku-3-20250307", display_name="Claude Haiku 3"),
]

OLLAMA_MODELS = [
    ModelInfo(id="llama2", display_name="Llama 2"),
    ModelInfo(id="mistral", display_name="Mistral"),
    ModelInfo(id="codellama", display_name="Code Llama"),
]

GITHUB_MODELS = [
    ModelInfo(id="gpt-4o", display_name="GPT-4o"),
    ModelInfo(id="gpt-4o-mini", display_name="GPT-4o mini"),
    ModelInfo(id="o3-mini", display_name="o3-mini"),
]

# Returned when the Copilot session catalog answers with a non-2xx status.
COPILOT_MINIMAL_MODELS = [ModelInfo(id="gpt-4o", display_name="GPT-4o")]

# Substrings of model ids that are not chat models.
EXCLUDED_MODEL_MARKERS = ("embedding", "goldeneye")


def static_models(models: Iterable[ModelInfo]) -> List[ModelInfo]:
    # Callers get a fresh list so they can't mutate the module catalog.
    return [m.model_copy() for m in models]


def filter_live_models(entries: Iterable[Dict[str, Any]]) -> List[ModelInfo]:
    """Shape a live `{"id", "name"}` listing: drop non-chat models, dedupe by id, sort by name."""
    seen: set[str] = set()
    models: List[ModelInfo] = []
    for entry in entries or []:
        if not isinstance(entry, dict):
            continue
        model_id = str(entry.get("id") or "")
        if not model_id:
            continue
        lowered = model_id.lower()
        if any(marker in lowered for marker in EXCLUDED_MODEL_MARKERS):
            continue
        if model_id in seen:
            continue
        seen.add(model_id)
        models.append(ModelInfo(id=model_id, display_name=str(entry.get("name") or model_id)))

    models.sort(key=lambda m: m.display_name)
    return models
