"""Versioned engine configuration: every threshold, weight and keyword table."""

from __future__ import annotations

from pydantic import BaseModel, Field

from trendscope import lexicon


class NormalizerSettings(BaseModel):
    max_title_length: int = 300
    max_description_length: int = 1000
    tracking_params: list[str] = Field(default_factory=lambda: list(lexicon.TRACKING_PARAMS))
    tracking_prefixes: list[str] = Field(default_factory=lambda: list(lexicon.TRACKING_PREFIXES))
    redirect_hosts: dict[str, list[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in lexicon.REDIRECT_HOSTS.items()}
    )


class AggregationSettings(BaseModel):
    order_independent_keys: bool = True
    headline_label_max_words: int = 8
    fallback_label_words: int = 6
    min_mentions: int = 3
    min_sources: int = 2
    min_24h_without_sources: int = 5
    single_word_min_mentions: int = 20
    single_word_min_sources: int = 3
    ambiguous_min_context_share: float = 0.3
    blocklist: list[str] = Field(default_factory=lambda: list(lexicon.BLOCKLIST))
    ambiguous_terms: dict[str, list[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in lexicon.AMBIGUOUS_TERMS.items()}
    )
    allowed_single_word_entities: list[str] = Field(
        default_factory=lambda: list(lexicon.ALLOWED_SINGLE_WORD_ENTITIES)
    )
    aliases: dict[str, str] = Field(default_factory=lambda: dict(lexicon.ALIASES))
    stopwords: list[str] = Field(default_factory=lambda: list(lexicon.STOPWORDS))
    event_verbs: list[str] = Field(default_factory=lambda: list(lexicon.EVENT_VERBS))
    event_nouns: list[str] = Field(default_factory=lambda: list(lexicon.EVENT_NOUNS))
    domain_keywords: dict[str, list[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in lexicon.DOMAIN_KEYWORDS.items()}
    )


class VelocitySettings(BaseModel):
    min_history_observations: int = 3
    stddev_floor: float = 1.0
    stddev_floor_ratio: float = 0.1
    cold_baseline_divisor: float = 3.0
    cold_min_baseline: float = 0.5
    cold_z_cap: float = 5.0
    z_min: float = -2.0
    z_max: float = 10.0
    min_corroboration: int = 3
    evergreen_entities: list[str] = Field(default_factory=lambda: list(lexicon.EVERGREEN_ENTITIES))
    evergreen_min_baseline_30d: float = 2.0
    evergreen_min_baseline_7d: float = 1.5
    evergreen_max_drift: float = 0.3


class ScoringSettings(BaseModel):
    velocity_per_z: float = 5.0
    velocity_cap: float = 50.0
    corroboration_cap: float = 30.0
    corroboration_per_domain: float = 3.0
    corroboration_domain_cap: float = 24.0
    corroboration_tier12_bonus: float = 3.0
    corroboration_mix_bonus: float = 3.0
    activity_cap: float = 20.0
    activity_1h_weight: float = 4.0
    activity_24h_weight: float = 2.0
    # recency
    recency_grace_hours: float = 2.0
    recency_half_life_hours: float = 12.0
    recency_floor: float = 0.3
    # penalties
    evergreen_floor: float = 0.35
    evergreen_relax_start_z: float = 1.0
    evergreen_relax_full_z: float = 8.0
    single_token_penalty: float = 0.6
    label_penalties: dict[str, float] = Field(
        default_factory=lambda: {
            "event_phrase": 1.0,
            "fallback_generated": 0.85,
            "entity_only": 0.6,
            "unknown": 0.7,
        }
    )
    entity_only_uncorroborated_penalty: float = 0.45
    high_volume_threshold: int = 20
    high_volume_min_z: float = 2.0
    high_volume_floor: float = 0.5
    # trending decision
    min_trending_score: float = 30.0
    min_trending_z: float = 1.0
    min_trending_1h: int = 2
    min_trending_24h: int = 5
    # trends whose newest evidence is older than this are retired
    trending_window_hours: float = 24.0
    # stages
    surge_volume_1h: int = 20
    emerging_z: float = 3.0
    emerging_max_age_hours: float = 3.0
    surging_z: float = 2.0
    declining_acceleration: float = -30.0
    # breaking
    breaking_z: float = 3.0
    breaking_max_age_hours: float = 8.0
    breaking_burst_1h: int = 8
    breaking_burst_max_age_hours: float = 3.0
    breaking_sustained_z: float = 4.0


class ClusteringSettings(BaseModel):
    similarity_threshold: float = 0.75
    jaccard_weight: float = 0.7


class RelevanceSettings(BaseModel):
    domain_cap: float = 35.0
    domain_primary_points: float = 32.0
    domain_extra_points: float = 3.0
    focus_cap: float = 20.0
    focus_points: float = 12.0
    watchlist_cap: float = 15.0
    affinity_cap: float = 20.0
    exploration_cap: float = 10.0
    weak_history_uses: int = 2
    weak_history_bonus: float = 5.0
    match_threshold: float = 0.5
    proven_affinity: float = 0.7
    proven_min_uses: int = 3
    generic_breaking_points: float = 20.0
    generic_trending_points: float = 15.0
    high_bucket: float = 65.0
    medium_bucket: float = 35.0
    min_exploration_share: float = 0.15
    fairness_max_ratio: float = 2.0
    org_type_topics: dict[str, list[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in lexicon.ORG_TYPE_TOPICS.items()}
    )


class AffinitySettings(BaseModel):
    alpha: float = 0.3
    initial_affinity: float = 0.5
    min_affinity: float = 0.2
    max_affinity: float = 0.95
    stale_after_days: int = 30
    decay_factor: float = 0.95
    decay_floor: float = 0.3
    decay_interval_days: int = 7
    channel_baselines: dict[str, float] = Field(
        default_factory=lambda: {"sms": 0.08, "email": 0.05, "push": 0.03, "social": 0.02}
    )


class EngineConfig(BaseModel):
    version: str = "1"
    normalizer: NormalizerSettings = Field(default_factory=NormalizerSettings)
    aggregation: AggregationSettings = Field(default_factory=AggregationSettings)
    velocity: VelocitySettings = Field(default_factory=VelocitySettings)
    scoring: ScoringSettings = Field(default_factory=ScoringSettings)
    clustering: ClusteringSettings = Field(default_factory=ClusteringSettings)
    relevance: RelevanceSettings = Field(default_factory=RelevanceSettings)
    affinity: AffinitySettings = Field(default_factory=AffinitySettings)
