"""Heuristic cost score for PromQL-style queries.

score = len(query) // 10
      + Σ weight × occurrences (case-insensitive) for each operator below
      + 2 per "("
      + 5 per "=~", 5 per "!~", 3 per "!=", 1 per "="

Occurrences are plain substring counts, so "sum by(" counts both "by(" and
"(", and "=~" also counts its "=". Adding any weighted operator to a query
never lowers its score.
"""

from __future__ import annotations

OPERATOR_WEIGHTS: dict[str, int] = {
    "rate(": 10,
    "irate(": 8,
    "increase(": 8,
    "histogram_": 15,
    "avg_over_": 12,
    "max_over_": 12,
    "min_over_": 12,
    "sum_over_": 12,
    "stddev_over_": 15,
    "quantile": 20,
    "topk(": 15,
    "bottomk(": 15,
    "group_": 10,
    "join": 25,
    "on(": 15,
    "by(": 10,
    "without(": 10,
    "and": 5,
    "or": 5,
    "unless": 8,
}

MATCHER_WEIGHTS: dict[str, int] = {
    "(": 2,
    "=~": 5,
    "!~": 5,
    "!=": 3,
    "=": 1,
}


def calculate_complexity_score(query: str) -> int:
    score = len(query) // 10
    lowered = query.lower()
    for operator, weight in OPERATOR_WEIGHTS.items():
        score += lowered.count(operator) * weight
    for token, weight in MATCHER_WEIGHTS.items():
        score += query.count(token) * weight
    return score
