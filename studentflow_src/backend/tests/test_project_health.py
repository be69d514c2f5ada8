import pytest

from ai_schemas import ProjectMetrics
from project_health import calculate_fallback_health, health_status


def _metrics(total, completed, overdue):
    return ProjectMetrics(total_tasks=total, completed_tasks=completed, overdue_tasks=overdue)


@pytest.mark.parametrize("score,status", [
    (100, "excellent"),
    (80, "excellent"),
    (79, "good"),
    (60, "good"),
    (59, "at_risk"),
    (40, "at_risk"),
    (39, "critical"),
    (0, "critical"),
])
def test_status_thresholds(score, status):
    assert health_status(score) == status


def test_score_always_within_bounds():
    for total in range(0, 13):
        for completed in range(0, total + 1):
            for overdue in range(0, total - completed + 1):
                health = calculate_fallback_health(_metrics(total, completed, overdue))
                assert 0 <= health.score <= 100
                assert health.status == health_status(health.score)


def test_same_metrics_same_result():
    metrics = _metrics(7, 4, 1)
    assert calculate_fallback_health(metrics) == calculate_fallback_health(metrics)


def test_empty_project_is_critical():
    health = calculate_fallback_health(_metrics(0, 0, 0))
    assert health.score == 0
    assert health.status == "critical"
    assert health.insights == ["0/0 tasks completed", "No overdue tasks"]


def test_mostly_done_project_is_excellent():
    health = calculate_fallback_health(_metrics(10, 9, 0))
    assert health.score == 90
    assert health.status == "excellent"


def test_heavily_overdue_project_clamps_to_zero():
    health = calculate_fallback_health(_metrics(10, 2, 5))
    assert health.score == 0
    assert health.status == "critical"
    assert health.insights == ["2/10 tasks completed", "5 overdue tasks need attention"]


def test_rounds_half_up():
    # 1/8 = 12.5%
    assert calculate_fallback_health(_metrics(8, 1, 0)).score == 13


def test_serialized_shape():
    assert calculate_fallback_health(_metrics(4, 3, 0)).to_json() == {
        "score": 75,
        "status": "good",
        "insights": ["3/4 tasks completed", "No overdue tasks"],
    }
