"""Provider/model identity helpers for usage grouping and display."""
from __future__ import annotations

import re

UNKNOWN = "unknown"
UNKNOWN_MODEL_KEY = f"{UNKNOWN}::{UNKNOWN}"

_VERSION_TOKEN_PATTERN = re.compile(r"^\d+$")
_DATE_TOKEN_PATTERN = re.compile(r"^\d{8}$")


def model_key(provider: str | None, model: str | None) -> str:
    """Grouping key for a (provider, model) pair; missing halves read as unknown."""
    return f"{provider or UNKNOWN}::{model or UNKNOWN}"


def is_known_model_key(key: str) -> bool:
    return key != UNKNOWN_MODEL_KEY


def _title_case(value: str) -> str:
    return " ".join(part.capitalize() for part in (value or "").strip().split() if part.strip())


def _provider_label(provider: str | None, model_tokens: list[str]) -> str:
    lowered = (provider or "").strip().lower()
    if not lowered and model_tokens:
        lowered = model_tokens[0]
    if lowered in {"anthropic", "claude"}:
        return "Anthropic"
    if lowered in {"openai", "gpt", "openai-codex"}:
        return "OpenAI"
    if lowered in {"google", "gemini", "google-gemini-cli"}:
        return "Google"
    if lowered:
        return _title_case(lowered.replace("-", " "))
    return ""


def model_display_name(provider: str | None, model: str | None) -> str:
    """Human-readable label such as ``Anthropic claude-opus-4.5``.

    Example:
      ("anthropic", "claude-opus-4-5-20251101") -> "Anthropic claude-opus-4.5"

    Build-date tokens end the name and consecutive numeric tokens are
    collapsed into a dotted version.
    """
    raw = (model or "").strip()
    if "/" in raw:
        raw = raw.rsplit("/", 1)[-1]
    tokens = [part for part in re.split(r"[-_\s]+", raw.lower()) if part]
    provider_label = _provider_label(provider, tokens)
    if not tokens:
        return provider_label or "Unknown"

    name_parts: list[str] = []
    version_parts: list[str] = []
    for token in tokens:
        if _DATE_TOKEN_PATTERN.match(token):
            break
        if _VERSION_TOKEN_PATTERN.match(token):
            version_parts.append(token)
            continue
        if version_parts:
            name_parts.append(".".join(version_parts))
            version_parts = []
        name_parts.append(token)
    if version_parts:
        name_parts.append(".".join(version_parts))

    model_label = "-".join(name_parts)
    return " ".join(part for part in [provider_label, model_label] if part) or raw
