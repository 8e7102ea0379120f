"""Domain models used across the detection, relevance and affinity passes."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# Namespace for deterministic trend-event IDs derived from the event key.
_EVENT_NAMESPACE = uuid.UUID("6f1c2a4e-93d5-4c1b-8a57-2d0e9b7f4c31")


class SourceType(str, Enum):
    NEWS = "news"
    SOCIAL = "social"
    GOVERNMENT = "government"


class LabelQuality(str, Enum):
    EVENT_PHRASE = "event_phrase"
    ENTITY_ONLY = "entity_only"
    FALLBACK_GENERATED = "fallback_generated"
    UNKNOWN = "unknown"


class TrendStage(str, Enum):
    EMERGING = "emerging"
    SURGING = "surging"
    STABLE = "stable"
    DECLINING = "declining"


class AffinitySource(str, Enum):
    SELF_DECLARED = "self_declared"
    LEARNED_OUTCOME = "learned_outcome"


class PriorityBucket(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


def trend_event_id(event_key: str) -> str:
    """Stable ID for a trend event; re-running a window yields the same ID."""
    return str(uuid.uuid5(_EVENT_NAMESPACE, event_key))


# ── Mentions ───────────────────────────────────────────────────────────────


class Extraction(BaseModel):
    """Output of the external NLP service for one mention."""

    entities: list[str] = Field(default_factory=list)
    policy_domains: list[str] = Field(default_factory=list)
    geographies: list[str] = Field(default_factory=list)
    is_event_phrase: bool = False
    event_phrase: str | None = None
    label_quality_hint: LabelQuality | None = None


class RawMention(BaseModel):
    """A mention as handed over by an ingestion connector."""

    title: str
    url: str
    published_at: datetime
    discovered_at: datetime | None = None
    source_type: SourceType = SourceType.NEWS
    source_domain: str | None = None
    source_tier: int | None = Field(default=None, ge=1, le=3)
    description: str | None = None
    canonical_url: str | None = None
    extraction: Extraction | None = None


class Mention(BaseModel):
    """A normalized, immutable mention."""

    model_config = ConfigDict(frozen=True)

    content_hash: str
    canonical_url: str
    source_domain: str
    source_type: SourceType
    source_tier: int | None = None
    title: str
    description: str = ""
    published_at: datetime
    discovered_at: datetime | None = None
    entities: tuple[str, ...] = ()
    policy_domains: tuple[str, ...] = ()
    geographies: tuple[str, ...] = ()
    is_event_phrase: bool = False
    event_phrase: str | None = None
    label_quality_hint: LabelQuality | None = None
    has_extraction: bool = False


class Window(BaseModel):
    start: datetime
    end: datetime  # the pass's notion of "now"


# ── Baselines & velocity ───────────────────────────────────────────────────


class DailyBaseline(BaseModel):
    """Hourly mention statistics for one topic on one day."""

    event_key: str
    baseline_date: str  # YYYY-MM-DD
    hourly_average: float = 0.0
    hourly_std_dev: float = 0.0
    relative_std_dev: float = 0.0


class Baseline(BaseModel):
    mean_7d: float = 0.0
    stddev_7d: float = 0.0
    mean_30d: float = 0.0
    stddev_30d: float = 0.0
    observations_7d: int = 0
    observations_30d: int = 0


class ZScoreResult(BaseModel):
    z_score: float
    baseline_used: float
    stddev_used: float
    is_corroborated: bool
    is_cold: bool = False
    observations: int = 0


# ── Topics & trend events ──────────────────────────────────────────────────


class TopicAggregate(BaseModel):
    event_key: str
    event_title: str
    is_event_phrase: bool = False
    label_quality: LabelQuality = LabelQuality.UNKNOWN
    mentions: list[Mention] = Field(default_factory=list)
    source_count_deduped: int = 0
    current_1h: int = 0
    current_6h: int = 0
    current_24h: int = 0
    news_count: int = 0
    social_count: int = 0
    tier12_count: int = 0
    by_source_type: dict[str, int] = Field(default_factory=dict)
    related_entities: list[str] = Field(default_factory=list)
    policy_domains: list[str] = Field(default_factory=list)
    geographies: list[str] = Field(default_factory=list)
    first_seen_at: datetime | None = None
    last_seen_at: datetime | None = None
    is_single_token: bool = False
    passes_quality_gate: bool = True
    gate_reason: str | None = None
    hourly_mean: float = 0.0
    hourly_std_dev: float = 0.0
    top_headline: str = ""


class ScoreBreakdown(BaseModel):
    """Every component and multiplier behind a confidence score."""

    velocity: float = 0.0
    corroboration: float = 0.0
    activity: float = 0.0
    raw_score: float = 0.0
    recency_decay: float = 1.0
    evergreen_penalty: float = 1.0
    single_token_penalty: float = 1.0
    label_quality_penalty: float = 1.0
    penalty_multiplier: float = 1.0
    high_volume_override: bool = False
    is_evergreen: bool = False
    final_score: float = 0.0


class TrendEvent(BaseModel):
    id: str
    event_key: str
    event_title: str
    is_event_phrase: bool = False
    label_quality: LabelQuality = LabelQuality.UNKNOWN
    mentions: list[Mention] = Field(default_factory=list)
    source_count: int = 0
    current_1h: int = 0
    current_6h: int = 0
    current_24h: int = 0
    news_count: int = 0
    social_count: int = 0
    tier12_count: int = 0
    baseline_7d: float = 0.0
    baseline_30d: float = 0.0
    z_score: float = 0.0
    confidence_score: float = 0.0
    is_trending: bool = False
    is_breaking: bool = False
    breaking_path: str | None = None
    trend_stage: TrendStage = TrendStage.STABLE
    first_seen_at: datetime | None = None
    last_seen_at: datetime | None = None
    cluster_id: str | None = None
    is_cluster_representative: bool = True
    merged_from: list[str] = Field(default_factory=list)
    related_entities: list[str] = Field(default_factory=list)
    policy_domains: list[str] = Field(default_factory=list)
    geographies: list[str] = Field(default_factory=list)
    passes_quality_gate: bool = True
    gate_reason: str | None = None
    breakdown: ScoreBreakdown = Field(default_factory=ScoreBreakdown)
    evidence_count: int = 0
    top_headline: str = ""


class Cluster(BaseModel):
    cluster_id: str
    representative: TrendEvent
    members: list[TrendEvent] = Field(default_factory=list)
    similarities: dict[str, float] = Field(default_factory=dict)


class ClusteredBatch(BaseModel):
    """The only shape the persistence step accepts from a detection pass."""

    pass_id: str
    computed_at: datetime
    clusters: list[Cluster] = Field(default_factory=list)

    def events(self) -> list[TrendEvent]:
        """Representatives first, then merged members, in cluster order."""
        out: list[TrendEvent] = []
        for cluster in self.clusters:
            out.append(cluster.representative)
            out.extend(m for m in cluster.members if m.id != cluster.representative.id)
        return out


# ── Organizations ──────────────────────────────────────────────────────────


class OrgProfile(BaseModel):
    organization_id: str
    org_type: str = ""
    display_name: str = ""
    policy_domains: list[str] = Field(default_factory=list)
    focus_areas: list[str] = Field(default_factory=list)
    watchlist: list[str] = Field(default_factory=list)
    geographies: list[str] = Field(default_factory=list)
    denied_entities: list[str] = Field(default_factory=list)


class OrgTopicAffinity(BaseModel):
    organization_id: str
    topic: str
    affinity_score: float = 0.5
    source: AffinitySource = AffinitySource.LEARNED_OUTCOME
    times_used: int = 0
    avg_performance: float = 0.0
    last_used_at: datetime | None = None
    last_decayed_at: datetime | None = None


class OrgRelevanceScore(BaseModel):
    organization_id: str
    trend_event_id: str
    relevance_score: float = 0.0
    profile_component: float = 0.0
    affinity_component: float = 0.0
    exploration_component: float = 0.0
    is_new_opportunity: bool = False
    is_proven_topic: bool = False
    is_blocked: bool = False
    reasons: list[str] = Field(default_factory=list)
    matched_domains: list[str] = Field(default_factory=list)
    matched_watchlist: list[str] = Field(default_factory=list)
    priority_bucket: PriorityBucket = PriorityBucket.LOW
    computed_at: datetime | None = None


class CampaignOutcome(BaseModel):
    """Observed performance of a campaign that used a trending topic."""

    campaign_type: str = "email"
    open_rate: float = 0.0
    click_rate: float = 0.0
    conversion_rate: float = 0.0


class FairnessReport(BaseModel):
    """Average relevance per organization group and the best/worst ratio."""

    averages: dict[str, float] = Field(default_factory=dict)
    ratio: float = 1.0
    max_ratio: float = 2.0
    within_bounds: bool = True


class PassReport(BaseModel):
    pass_id: str
    computed_at: datetime
    mentions_in: int = 0
    mentions_kept: int = 0
    topics: int = 0
    topics_scored: int = 0
    topics_skipped: int = 0
    clusters: int = 0
    persisted: int = 0
    failed_records: list[str] = Field(default_factory=list)
    trending: int = 0
    breaking: int = 0
    retired: int = 0
