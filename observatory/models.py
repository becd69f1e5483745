"""Pydantic models for collected metrics, matching the dashboard payload."""
from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Any, Optional, Union

# ── Usage and cost ─────────────────────────────────────────────────

class UsageTuple(BaseModel):
    input: int = 0
    output: int = 0
    cacheRead: int = 0
    cacheWrite: int = 0
    total: int = 0


class CostBreakdown(BaseModel):
    total: float
    input: Optional[float] = None
    output: Optional[float] = None
    cacheRead: Optional[float] = None
    cacheWrite: Optional[float] = None


class UsageTotals(BaseModel):
    input: int = 0
    output: int = 0
    cacheRead: int = 0
    cacheWrite: int = 0
    totalTokens: int = 0
    totalCost: float = 0.0
    inputCost: float = 0.0
    outputCost: float = 0.0
    cacheReadCost: float = 0.0
    cacheWriteCost: float = 0.0
    missingCostEntries: int = 0

    def apply_usage(self, usage: UsageTuple) -> None:
        self.input += usage.input
        self.output += usage.output
        self.cacheRead += usage.cacheRead
        self.cacheWrite += usage.cacheWrite
        self.totalTokens += usage.total

    def apply_breakdown(self, breakdown: CostBreakdown) -> None:
        self.totalCost += breakdown.total
        if breakdown.input is not None:
            self.inputCost += breakdown.input
        if breakdown.output is not None:
            self.outputCost += breakdown.output
        if breakdown.cacheRead is not None:
            self.cacheReadCost += breakdown.cacheRead
        if breakdown.cacheWrite is not None:
            self.cacheWriteCost += breakdown.cacheWrite

    def apply_cost_total(self, total: Optional[float]) -> None:
        """Add a flat cost total, or count the entry as missing cost."""
        if total is None or total < 0:
            self.missingCostEntries += 1
            return
        self.totalCost += total

    def merge(self, other: UsageTotals) -> None:
        self.input += other.input
        self.output += other.output
        self.cacheRead += other.cacheRead
        self.cacheWrite += other.cacheWrite
        self.totalTokens += other.totalTokens
        self.totalCost += other.totalCost
        self.inputCost += other.inputCost
        self.outputCost += other.outputCost
        self.cacheReadCost += other.cacheReadCost
        self.cacheWriteCost += other.cacheWriteCost
        self.missingCostEntries += other.missingCostEntries


class MessageCounts(BaseModel):
    total: int = 0
    user: int = 0
    assistant: int = 0
    toolCalls: int = 0
    toolResults: int = 0
    errors: int = 0

    def merge(self, other: MessageCounts) -> None:
        self.total += other.total
        self.user += other.user
        self.assistant += other.assistant
        self.toolCalls += other.toolCalls
        self.toolResults += other.toolResults
        self.errors += other.errors


class LatencyStats(BaseModel):
    count: int
    avgMs: float
    p95Ms: float
    minMs: float
    maxMs: float


class DailyBucket(BaseModel):
    date: str  # UTC day, YYYY-MM-DD
    tokens: int = 0
    cost: float = 0.0
    messages: int = 0
    toolCalls: int = 0
    errors: int = 0
    latency: Optional[LatencyStats] = None


# ── Session-level models ───────────────────────────────────────────

class TimelineEvent(BaseModel):
    timestamp: int
    role: str  # "user" | "assistant" | "tool" | "toolResult"
    provider: Optional[str] = None
    model: Optional[str] = None
    tokens: int = 0
    inputTokens: int = 0
    outputTokens: int = 0
    cost: Optional[float] = None
    durationMs: Optional[float] = None
    toolCalls: int = 0
    toolResults: int = 0
    isError: bool = False
    stopReason: Optional[str] = None
    text: str = ""


class WaterfallSpan(BaseModel):
    startTs: int
    endTs: int
    latencyMs: float
    provider: Optional[str] = None
    model: Optional[str] = None
    tokens: int = 0
    cost: Optional[float] = None
    error: bool = False


class PreviewEntry(BaseModel):
    timestamp: Optional[int] = None
    role: str
    text: str


class ToolCount(BaseModel):
    name: str
    count: int = 0


class ToolUsage(BaseModel):
    totalCalls: int = 0
    uniqueTools: int = 0
    tools: list[ToolCount] = Field(default_factory=list)


class ModelUsage(BaseModel):
    provider: Optional[str] = None
    model: Optional[str] = None
    displayName: str = ""
    count: int = 0
    totals: UsageTotals = Field(default_factory=UsageTotals)


class ContextWeight(BaseModel):
    source: Any = None
    generatedAt: Any = None
    systemPrompt: Optional[dict[str, Any]] = None
    skills: Optional[dict[str, Any]] = None
    tools: Optional[dict[str, Any]] = None


class SessionSummary(BaseModel):
    id: str
    key: str
    agentId: str
    sessionId: str
    fileName: str
    filePath: str
    label: Optional[str] = None
    channel: Optional[str] = None
    chatType: Optional[str] = None
    updatedAt: Optional[float] = None
    firstActivity: Optional[int] = None
    lastActivity: Optional[int] = None
    durationMs: Optional[int] = None
    totals: UsageTotals = Field(default_factory=UsageTotals)
    messageCounts: MessageCounts = Field(default_factory=MessageCounts)
    toolUsage: ToolUsage = Field(default_factory=ToolUsage)
    modelUsage: list[ModelUsage] = Field(default_factory=list)
    latency: Optional[LatencyStats] = None
    daily: list[DailyBucket] = Field(default_factory=list)
    contextWeight: Optional[ContextWeight] = None
    systemPromptReport: Optional[dict[str, Any]] = None
    memoryFlushAt: Optional[float] = None
    memoryFlushCompactionCount: Optional[float] = None
    modelOverride: Optional[str] = None
    providerOverride: Optional[str] = None
    preview: list[PreviewEntry] = Field(default_factory=list)
    timeline: list[TimelineEvent] = Field(default_factory=list)
    waterfall: list[WaterfallSpan] = Field(default_factory=list)
    modelSwitches: int = 0
    uniqueModels: int = 0
    activityDates: list[str] = Field(default_factory=list)


# ── Memory corpus models ───────────────────────────────────────────

class MemoryFileEntry(BaseModel):
    path: str
    relativePath: str
    title: str
    snippet: str = ""
    size: int = 0
    mtimeMs: float = 0.0


class MemoryDayBucket(BaseModel):
    date: str
    files: int = 0
    bytes: int = 0


class KeywordCount(BaseModel):
    word: str
    count: int = 0


class CorpusStats(BaseModel):
    workspaceDir: str
    memoryDir: str
    exists: bool = False
    fileCount: int = 0
    totalBytes: int = 0
    newestMs: Optional[float] = None
    oldestMs: Optional[float] = None
    byDay: list[MemoryDayBucket] = Field(default_factory=list)
    files: list[MemoryFileEntry] = Field(default_factory=list)
    keywords: list[KeywordCount] = Field(default_factory=list)


# ── Fleet aggregate models ─────────────────────────────────────────

class ModelRow(BaseModel):
    provider: Optional[str] = None
    model: Optional[str] = None
    displayName: str = ""
    count: int = 0
    sessions: int = 0
    totals: UsageTotals = Field(default_factory=UsageTotals)


class ProviderRow(BaseModel):
    provider: Optional[str] = None
    count: int = 0
    sessions: int = 0
    totals: UsageTotals = Field(default_factory=UsageTotals)


class AgentRow(BaseModel):
    agentId: str
    sessions: int = 0
    totals: UsageTotals = Field(default_factory=UsageTotals)


class ChannelRow(BaseModel):
    channel: str
    sessions: int = 0
    totals: UsageTotals = Field(default_factory=UsageTotals)


class ContextRow(BaseModel):
    id: str
    key: str
    label: Optional[str] = None
    agentId: str
    updatedAt: Optional[float] = None
    chars: float = 0
    projectChars: Optional[float] = None
    nonProjectChars: Optional[float] = None
    skillsChars: float = 0
    toolsListChars: float = 0
    toolsSchemaChars: float = 0


class FleetAggregates(BaseModel):
    daily: list[DailyBucket] = Field(default_factory=list)
    tools: list[ToolCount] = Field(default_factory=list)
    byModel: list[ModelRow] = Field(default_factory=list)
    byProvider: list[ProviderRow] = Field(default_factory=list)
    byAgent: list[AgentRow] = Field(default_factory=list)
    byChannel: list[ChannelRow] = Field(default_factory=list)
    context: list[ContextRow] = Field(default_factory=list)


# ── Anomalies and alerts ───────────────────────────────────────────

class TokenSpike(BaseModel):
    date: str
    tokens: int
    baselineTokens: float
    ratio: float


class LatencyDay(BaseModel):
    date: str
    avgMs: float
    p95Ms: Optional[float] = None


class LatencyJitter(BaseModel):
    coefficientOfVariation: float
    globalP95ToAvgRatio: float
    days: list[LatencyDay] = Field(default_factory=list)


class SwitchedModel(BaseModel):
    provider: str
    model: str
    tokens: int = 0
    cost: float = 0.0


class ModelSwitchSession(BaseModel):
    sessionId: str
    key: str
    agentId: str
    label: Optional[str] = None
    switches: int = 0
    uniqueModels: int = 0
    models: list[SwitchedModel] = Field(default_factory=list)
    updatedAt: Optional[float] = None


class Anomalies(BaseModel):
    tokenSpikes: list[TokenSpike] = Field(default_factory=list)
    latencyJitter: Optional[LatencyJitter] = None
    modelSwitching: list[ModelSwitchSession] = Field(default_factory=list)


class Alert(BaseModel):
    level: str  # "info" | "warn"
    title: str
    message: str


# ── Collection request / response ──────────────────────────────────

class CollectOptions(BaseModel):
    stateDir: Optional[str] = None
    workspaceDir: Optional[str] = None
    days: Optional[Union[float, str]] = None  # positive number or "all"
    agent: Optional[str] = None
    channel: Optional[str] = None
    sessionLimit: Optional[float] = None
    memoryLimit: Optional[float] = None
    timelineLimit: Optional[float] = None


class TimeRange(BaseModel):
    days: Union[int, float, str]
    startMs: Optional[int] = None
    endMs: int
    startIso: Optional[str] = None
    endIso: str

    def contains(self, timestamp_ms: Optional[int]) -> bool:
        """Records without a timestamp always count as in range."""
        if timestamp_ms is None:
            return True
        if self.startMs is not None and timestamp_ms < self.startMs:
            return False
        return timestamp_ms <= self.endMs


class SelectedFilters(BaseModel):
    agent: Optional[str] = None
    channel: Optional[str] = None


class FilterOptions(BaseModel):
    agents: list[str] = Field(default_factory=list)
    channels: list[str] = Field(default_factory=list)


class Filters(BaseModel):
    selected: SelectedFilters = Field(default_factory=SelectedFilters)
    options: FilterOptions = Field(default_factory=FilterOptions)


class SummaryKpis(BaseModel):
    sessionsScanned: int = 0
    sessionsInScope: int = 0
    totalTokens: int = 0
    totalCost: float = 0.0
    cacheReadSharePct: float = 0.0
    errorRatePct: float = 0.0
    avgLatencyMs: Optional[float] = None
    p95LatencyMs: Optional[float] = None


class SkippedFile(BaseModel):
    agentId: str
    fileName: str
    error: str


class MetricsPayload(BaseModel):
    generatedAt: int
    stateDir: str
    workspaceDir: str
    range: TimeRange
    filters: Filters
    summary: SummaryKpis
    totals: UsageTotals
    messages: MessageCounts
    latency: Optional[LatencyStats] = None
    aggregates: FleetAggregates
    sessions: list[SessionSummary] = Field(default_factory=list)
    memory: CorpusStats
    anomalies: Anomalies
    alerts: list[Alert] = Field(default_factory=list)
    skippedFiles: list[SkippedFile] = Field(default_factory=list)
