"""Per-route cacheability score.

Inputs per route (one generation window): request count, distinct response bodies, distinct
urls, inter-request times. Running frequency/stability statistics and a short score history
are carried from the previous recommendation for the same route, so no raw traffic is kept.

    stability  = 1 / distinct_bodies
    frequency  = kernel(avg_inter_request_time | running frequency stats)
                 (first sighting: min(SCALE_FACTOR / avg_inter_request_time, 1))
    base       = w_freq * frequency + w_stab * stability      (weights follow body variability)
    score      = (1 - HW - PW) * base + HW * history + PW * past_avg + bonus
    score     *= (1 - skew) * (1 - overlap)                   (only for routes with many urls)

The result is clamped to [0, 1]; ``recommended = score >= threshold``.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from math import exp, pi, sqrt
from typing import Any
from traffic_advisor.config import Settings
from traffic_advisor.utils.significance import RunningStats, gaussian_kernel, round_significant, welford_update

# Priors used the first time a route is scored (inter-request times are in milliseconds)
DEFAULT_FREQUENCY_STATS = RunningStats(count=2, mean=1000.0, m2=2 * 1000.0 ** 2, std_dev=1000.0)
DEFAULT_STABILITY_STATS = RunningStats(count=2, mean=0.5, m2=2 * 0.5 ** 2, std_dev=0.5)


@dataclass
class ScoringOptions:
    threshold: float = 0.6
    history_length: int = 10
    decay_factor: float = 0.5
    expected_ids: int = 100
    history_weight: float = 0.2
    past_score_weight: float = 0.1
    scale_factor: float = 1000.0
    scale_sigma: float = 100.0
    base_ttl: int = 60
    min_ttl: int = 1
    max_ttl: int = 3600

    @classmethod
    def from_settings(cls, s: Settings) -> ScoringOptions:
        return cls(
            threshold=s.recommendation_score_threshold,
            history_length=s.recommendation_history_length,
            decay_factor=s.recommendation_decay_factor,
            expected_ids=s.recommendation_expected_ids,
            history_weight=s.recommendation_history_weight,
            past_score_weight=s.recommendation_past_score_weight,
            scale_factor=s.recommendation_scale_factor,
            scale_sigma=s.recommendation_scale_sigma,
            base_ttl=s.recommendation_base_ttl,
            min_ttl=s.recommendation_min_ttl,
            max_ttl=s.recommendation_max_ttl,
        )


@dataclass
class RouteMetrics:
    route: str
    application_id: str
    telemetry_id: str
    service_name: str | None
    domain: str
    requests_count: int
    distinct_bodies: int
    distinct_urls: int
    max_body_size: int
    max_requests_count: int
    inter_request_times: list[float] = field(default_factory=list)

    @property
    def hits(self) -> int:
        return self.requests_count - self.distinct_bodies

    @property
    def misses(self) -> int:
        return self.distinct_bodies

    @property
    def memory(self) -> int:
        return self.distinct_urls * self.max_body_size

    @property
    def avg_inter_request_time(self) -> float:
        return sum(self.inter_request_times) / (self.requests_count - 1)


@dataclass
class RouteScore:
    score: float
    ttl: int
    recommended: bool
    scores: dict[str, Any]


def summarize_route(route: str, application_id: str, urls: dict[str, dict]) -> RouteMetrics | None:
    """Fold the per-url request lists of one route into ``RouteMetrics``.

    Routes with fewer than two requests have no inter-request time and are skipped.
    """
    telemetry_id = service_name = domain = None
    requests_count = distinct_bodies = max_body_size = max_requests_count = 0
    inter_request_times: list[float] = []
    for url_metrics in urls.values():
        requests = sorted(url_metrics["requests"], key=lambda r: r["timestamp"])
        body_hashes = set()
        for i, request in enumerate(requests):
            body_hashes.add(request["bodyHash"])
            max_body_size = max(max_body_size, request["bodySize"])
            if i + 1 < len(requests):
                inter_request_times.append(requests[i + 1]["timestamp"] - request["timestamp"])
        telemetry_id = url_metrics["telemetryId"]
        service_name = url_metrics["serviceName"]
        domain = url_metrics["domain"]
        requests_count += len(requests)
        distinct_bodies += len(body_hashes)
        max_requests_count = max(max_requests_count, len(requests))
    if requests_count <= 1:
        return None
    return RouteMetrics(
        route=route,
        application_id=application_id,
        telemetry_id=telemetry_id,
        service_name=service_name,
        domain=domain,
        requests_count=requests_count,
        distinct_bodies=distinct_bodies,
        distinct_urls=len(urls),
        max_body_size=max_body_size,
        max_requests_count=max_requests_count,
        inter_request_times=inter_request_times,
    )


def _kernel(x: float, stats: RunningStats, scale: float = 1.0) -> float:
    if not stats.std_dev:
        return 1.0 if x == stats.mean else 0.0
    return gaussian_kernel(x, stats.mean, stats.std_dev, scale)


def calculate_weights(distinct_bodies: int, requests_count: int) -> tuple[float, float]:
    variability = min(distinct_bodies / requests_count, 1)
    weight_freq = min(0.5 + 0.25 * (1 - variability), 0.75)
    return weight_freq, 1 - weight_freq


def calculate_history_score(avg_inter_request_time: float, stability: float,
                            frequency_stats: RunningStats, stability_stats: RunningStats) -> float:
    norm = sqrt(2 * pi)
    frequency_score = min(1.0, _kernel(avg_inter_request_time, frequency_stats, 2) * (frequency_stats.std_dev or 0) * norm)
    stability_score = min(1.0, _kernel(stability, stability_stats, 2) * (stability_stats.std_dev or 0) * norm)
    return (frequency_score + stability_score) / 2


def calculate_past_score_avg(history: list[dict], decay_factor: float) -> float:
    scores_sum = weights_sum = 0.0
    for i, entry in enumerate(history):
        weight = exp(-decay_factor * (len(history) - i - 1))
        scores_sum += weight * entry["score"]
        weights_sum += weight
    return scores_sum / weights_sum if weights_sum else 0.5


def calculate_recommendation_bonus(history: list[dict]) -> float:
    if not history:
        return 0.0
    return sum(int(entry["recommended"]) for entry in history) / len(history) * 0.1


def calculate_score(
    metrics: RouteMetrics,
    opts: ScoringOptions,
    previous: dict | None = None,
    parent_score: float = 0.0,
    parent_requests_count: int = 0,
) -> RouteScore:
    """Score one route. ``previous`` is the ``scores`` map of the same route in the last recommendation."""
    is_first = previous is None
    previous = previous or {}
    history = list(previous.get("scoresHistory") or [])
    frequency_stats = RunningStats.from_dict(previous.get("frequencyStats")) or DEFAULT_FREQUENCY_STATS
    stability_stats = RunningStats.from_dict(previous.get("stabilityStats")) or DEFAULT_STABILITY_STATS

    avg_time = metrics.avg_inter_request_time
    stability = 1 / metrics.distinct_bodies

    for t in metrics.inter_request_times:
        frequency_stats = welford_update(frequency_stats, t)
    stability_stats = welford_update(stability_stats, stability)

    if is_first:
        frequency = min(opts.scale_factor / avg_time, 1.0) if avg_time > 0 else 1.0
    else:
        frequency = min(_kernel(avg_time, frequency_stats, 2), 1.0)

    weight_freq, weight_stab = calculate_weights(metrics.distinct_bodies, metrics.requests_count)
    base = weight_freq * frequency + weight_stab * stability

    history_score = past_avg = 0.5
    bonus = 0.0
    if not is_first:
        history_score = calculate_history_score(avg_time, stability, frequency_stats, stability_stats)
        past_avg = calculate_past_score_avg(history, opts.decay_factor)
        bonus = calculate_recommendation_bonus(history)

    score = (
        (1 - opts.history_weight - opts.past_score_weight) * base
        + opts.history_weight * history_score
        + opts.past_score_weight * past_avg
        + bonus
    )

    skew = overlap = 0.0
    if metrics.distinct_urls > 1:
        skew = min((metrics.max_requests_count / metrics.requests_count) * (metrics.distinct_urls / opts.expected_ids), 1.0)
        overlap = min(parent_requests_count / metrics.requests_count, 1.0) * parent_score
        score *= (1 - skew) * (1 - overlap)
    score = min(max(score, 0.0), 1.0)

    ttl_factor = score
    if not is_first and avg_time > 0:
        ttl_factor *= stability * opts.scale_factor / avg_time
        ttl_factor *= opts.scale_sigma / (frequency_stats.std_dev or 1)
    ttl = round(min(max(opts.base_ttl * ttl_factor, opts.min_ttl), opts.max_ttl))

    recommended = score >= opts.threshold
    score = round_significant(score)
    history.append({
        "score": score,
        "recommended": int(recommended),
        "frequency": round_significant(frequency),
        "stability": round_significant(stability),
        "requestCount": metrics.requests_count,
    })

    return RouteScore(
        score=score,
        ttl=ttl,
        recommended=recommended,
        scores={
            "stabilityScore": round_significant(stability),
            "frequencyScore": round_significant(frequency),
            "weightFrequency": round_significant(weight_freq),
            "weightStability": round_significant(weight_stab),
            "baseScore": round_significant(base),
            "historyScore": round_significant(history_score),
            "pastScoreAvg": round_significant(past_avg),
            "recommendationBonus": round_significant(bonus),
            "skew": round_significant(skew),
            "overlap": round_significant(overlap),
            "frequencyStats": frequency_stats.to_dict(),
            "stabilityStats": stability_stats.to_dict(),
            "scoresHistory": history[-opts.history_length:],
        },
    )
