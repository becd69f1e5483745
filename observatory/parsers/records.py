"""Normalize raw transcript records into canonical usage, cost, and tool facts.

Transcripts written by different runtime versions name the same facts
differently (``inputTokens`` vs ``prompt_tokens``, ``costTotal`` vs
``cost.total``...). Each field is resolved through an ordered tuple of
extraction rules; the first rule that yields a value wins.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Callable, NamedTuple

from observatory.date_utils import is_representable_ms, parse_iso_ms
from observatory.models import CostBreakdown, UsageTuple

ROLES = ("user", "assistant", "tool", "toolResult")
STOP_REASON_ERRORS = {"error", "aborted", "cancelled", "timeout"}
TIMELINE_SNIPPET_CHARS = 140
PREVIEW_SNIPPET_CHARS = 180


class RawEntry(NamedTuple):
    """One decoded transcript line and its nested ``message`` payload."""

    record: dict[str, Any]
    message: dict[str, Any]


Rule = Callable[[Any], Any]


def as_record(value: Any) -> dict[str, Any] | None:
    if isinstance(value, dict):
        return value
    return None


def to_finite(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return value


def first_match(rules: tuple[Rule, ...], source: Any) -> Any:
    for rule in rules:
        value = rule(source)
        if value is not None:
            return value
    return None


# ── Rule builders ──────────────────────────────────────────────────

def _number(key: str) -> Rule:
    def rule(source: dict[str, Any]) -> float | None:
        return to_finite(source.get(key))
    return rule


def _nested_number(parent: str, key: str) -> Rule:
    def rule(source: dict[str, Any]) -> float | None:
        nested = as_record(source.get(parent))
        return to_finite(nested.get(key)) if nested else None
    return rule


def _record_text(key: str) -> Rule:
    def rule(entry: RawEntry) -> str | None:
        value = entry.record.get(key)
        return value if isinstance(value, str) else None
    return rule


def _message_text(key: str) -> Rule:
    def rule(entry: RawEntry) -> str | None:
        value = entry.message.get(key)
        return value if isinstance(value, str) else None
    return rule


def _on_record(rule: Rule) -> Rule:
    return lambda entry: rule(entry.record)


def _on_message(rule: Rule) -> Rule:
    return lambda entry: rule(entry.message)


def _record_iso_timestamp(entry: RawEntry) -> int | None:
    return parse_iso_ms(entry.record.get("timestamp"))


def _message_numeric_timestamp(entry: RawEntry) -> int | None:
    value = to_finite(entry.message.get("timestamp"))
    if value is None or not is_representable_ms(value):
        return None
    return int(round(value))


# ── Field rule tables (tried in declared order) ────────────────────

INPUT_TOKEN_RULES: tuple[Rule, ...] = (
    _number("input"),
    _number("inputTokens"),
    _number("prompt_tokens"),
    _number("promptTokens"),
)
OUTPUT_TOKEN_RULES: tuple[Rule, ...] = (
    _number("output"),
    _number("outputTokens"),
    _number("completion_tokens"),
    _number("completionTokens"),
)
CACHE_READ_TOKEN_RULES: tuple[Rule, ...] = (
    _number("cacheRead"),
    _number("cache_read_input_tokens"),
    _number("cacheReadInputTokens"),
)
CACHE_WRITE_TOKEN_RULES: tuple[Rule, ...] = (
    _number("cacheWrite"),
    _number("cache_creation_input_tokens"),
    _number("cacheWriteInputTokens"),
)
TOTAL_TOKEN_RULES: tuple[Rule, ...] = (
    _number("total"),
    _number("totalTokens"),
    _number("total_tokens"),
)
TIMESTAMP_RULES: tuple[Rule, ...] = (
    _record_iso_timestamp,
    _message_numeric_timestamp,
)
PROVIDER_RULES: tuple[Rule, ...] = (_message_text("provider"), _record_text("provider"))
MODEL_RULES: tuple[Rule, ...] = (_message_text("model"), _record_text("model"))
STOP_REASON_RULES: tuple[Rule, ...] = (_message_text("stopReason"), _record_text("stopReason"))
FLAT_COST_RULES: tuple[Rule, ...] = (
    _on_record(_number("costTotal")),
    _on_message(_number("costTotal")),
    _on_record(_nested_number("cost", "total")),
    _on_message(_nested_number("cost", "total")),
)
DURATION_RULES: tuple[Rule, ...] = (
    _on_record(_number("durationMs")),
    _on_message(_number("durationMs")),
)


def _usage_source(entry: RawEntry) -> Any:
    usage = entry.message.get("usage")
    return usage if usage is not None else entry.record.get("usage")


# ── Normalizers ────────────────────────────────────────────────────

def _token_count(rules: tuple[Rule, ...], usage: dict[str, Any]) -> int:
    value = first_match(rules, usage)
    return max(0, int(round(value))) if value is not None else 0


def normalize_usage(raw: Any) -> UsageTuple | None:
    """Build a UsageTuple, or None when the source carries no tokens at all."""
    usage = as_record(raw)
    if usage is None:
        return None

    input_tokens = _token_count(INPUT_TOKEN_RULES, usage)
    output_tokens = _token_count(OUTPUT_TOKEN_RULES, usage)
    cache_read = _token_count(CACHE_READ_TOKEN_RULES, usage)
    cache_write = _token_count(CACHE_WRITE_TOKEN_RULES, usage)
    parts = input_tokens + output_tokens + cache_read + cache_write

    explicit_total = first_match(TOTAL_TOKEN_RULES, usage)
    total = parts if explicit_total is None else max(parts, int(round(explicit_total)))
    if total <= 0:
        return None

    return UsageTuple(
        input=input_tokens,
        output=output_tokens,
        cacheRead=cache_read,
        cacheWrite=cache_write,
        total=total,
    )


def extract_cost_breakdown(raw_usage: Any) -> CostBreakdown | None:
    usage = as_record(raw_usage)
    cost = as_record(usage.get("cost")) if usage else None
    if cost is None:
        return None
    total = to_finite(cost.get("total"))
    if total is None or total < 0:
        return None
    return CostBreakdown(
        total=total,
        input=to_finite(cost.get("input")),
        output=to_finite(cost.get("output")),
        cacheRead=to_finite(cost.get("cacheRead")),
        cacheWrite=to_finite(cost.get("cacheWrite")),
    )


@dataclass
class ToolDetails:
    names: list[str] = field(default_factory=list)
    results: int = 0
    errors: int = 0


def extract_tool_details(message: dict[str, Any]) -> ToolDetails:
    """Count tool invocations and results from content blocks and legacy roles."""
    details = ToolDetails()
    content = message.get("content")
    if isinstance(content, list):
        for part in content:
            block = as_record(part)
            if block is None:
                continue
            if block.get("type") == "tool_use":
                name = block.get("name")
                name = name.strip() if isinstance(name, str) else ""
                if name:
                    details.names.append(name)
            if block.get("type") == "tool_result":
                details.results += 1
                if block.get("is_error") is True:
                    details.errors += 1

    role = message.get("role")
    if role == "tool":
        for key in ("toolName", "name"):
            if isinstance(message.get(key), str):
                details.names.append(message[key])
                break
        else:
            details.names.append("tool")
    if role == "toolResult":
        details.results += 1
    return details


def extract_text(content: Any) -> str:
    if isinstance(content, str):
        return content.strip()
    if not isinstance(content, list):
        return ""

    chunks: list[str] = []
    for part in content:
        if isinstance(part, str):
            if part.strip():
                chunks.append(part.strip())
            continue
        block = as_record(part)
        if block is None:
            continue
        block_type = block.get("type")
        if block_type == "text" and isinstance(block.get("text"), str):
            text = block["text"].strip()
            if text:
                chunks.append(text)
        elif block_type == "tool_use":
            name = block.get("name") if isinstance(block.get("name"), str) else "tool"
            chunks.append(f"[tool:{name}]")
        elif block_type == "tool_result":
            chunks.append("[tool_result]")
    return " ".join(chunks).strip()


def trim_snippet(value: str, max_chars: int = PREVIEW_SNIPPET_CHARS) -> str:
    if not value:
        return ""
    if len(value) <= max_chars:
        return value
    return f"{value[: max_chars - 1]}…"


def is_error_stop_reason(stop_reason: str | None) -> bool:
    return bool(stop_reason) and stop_reason.lower() in STOP_REASON_ERRORS


@dataclass
class NormalizedRecord:
    timestamp_ms: int | None
    role: str | None
    provider: str | None
    model: str | None
    stop_reason: str | None
    usage: UsageTuple | None
    cost_breakdown: CostBreakdown | None
    flat_cost: float | None
    duration_ms: float | None
    tools: ToolDetails
    text: str

    @property
    def stop_reason_is_error(self) -> bool:
        return is_error_stop_reason(self.stop_reason)

    @property
    def is_error(self) -> bool:
        return self.tools.errors > 0 or self.stop_reason_is_error

    @property
    def cost_total(self) -> float | None:
        """Cost attributed to this record, if any source supplied a usable one."""
        if self.usage is None:
            return None
        if self.cost_breakdown is not None:
            return self.cost_breakdown.total
        if self.flat_cost is not None and self.flat_cost >= 0:
            return self.flat_cost
        return None


def normalize_record(parsed: Any) -> NormalizedRecord | None:
    """Normalize one decoded transcript line; non-object lines yield None."""
    record = as_record(parsed)
    if record is None:
        return None
    entry = RawEntry(record=record, message=as_record(record.get("message")) or {})

    role = entry.message.get("role")
    usage_raw = _usage_source(entry)
    usage = normalize_usage(usage_raw)
    cost_breakdown = extract_cost_breakdown(usage_raw) if usage else None
    flat_cost = first_match(FLAT_COST_RULES, entry) if usage and cost_breakdown is None else None

    return NormalizedRecord(
        timestamp_ms=first_match(TIMESTAMP_RULES, entry),
        role=role if role in ROLES else None,
        provider=first_match(PROVIDER_RULES, entry),
        model=first_match(MODEL_RULES, entry),
        stop_reason=first_match(STOP_REASON_RULES, entry),
        usage=usage,
        cost_breakdown=cost_breakdown,
        flat_cost=flat_cost,
        duration_ms=first_match(DURATION_RULES, entry),
        tools=extract_tool_details(entry.message),
        text=extract_text(entry.message.get("content")),
    )
