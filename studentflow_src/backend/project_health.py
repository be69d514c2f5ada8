import math
from typing import Dict

from ai_schemas import HealthScore, ProjectMetrics


def health_status(score: int) -> str:
    if score >= 80:
        return "excellent"
    elif score >= 60:
        return "good"
    elif score >= 40:
        return "at_risk"
    return "critical"


def metrics_rates(metrics: ProjectMetrics) -> Dict[str, float]:
    """Completion and overdue percentages; both 0 for an empty project."""
    total = metrics.total_tasks
    if total <= 0:
        return {"completion_rate": 0.0, "overdue_ratio": 0.0}
    return {
        "completion_rate": metrics.completed_tasks / total * 100,
        "overdue_ratio": metrics.overdue_tasks / total * 100,
    }


def calculate_fallback_health(metrics: ProjectMetrics) -> HealthScore:
    """
    Deterministic health score used when no AI provider answers.

    score = completion rate minus twice the overdue ratio, rounded half-up and
    clamped to 0..100.
    """
    rates = metrics_rates(metrics)
    raw = rates["completion_rate"] - rates["overdue_ratio"] * 2
    score = max(0, min(100, math.floor(raw + 0.5)))

    if metrics.overdue_tasks > 0:
        overdue_line = f"{metrics.overdue_tasks} overdue tasks need attention"
    else:
        overdue_line = "No overdue tasks"

    return HealthScore(
        score=score,
        status=health_status(score),
        insights=[
            f"{metrics.completed_tasks}/{metrics.total_tasks} tasks completed",
            overdue_line,
        ],
    )
