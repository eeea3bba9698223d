"""
Performance tests for HabitSync API

Baselines for the main read/write paths:
- GET /synced-data p95 <= 200ms
- POST /synced-data p95 <= 300ms
- POST /stats/streaks (30 habits x 90 days) p95 <= 500ms

Run with: pytest tests/test_performance.py -v -m performance
Skip with: pytest tests/ -m "not performance"
"""

import time
import uuid
from datetime import date, timedelta
from statistics import median, quantiles

import pytest


def _report(title, response_times, target):
    p50 = median(response_times)
    p95, p99 = (
        quantiles(response_times, n=100)[94],
        quantiles(response_times, n=100)[98],
    )

    print(f"\n {title} Performance Metrics:")
    print(f"   Iterations: {len(response_times)}")
    print(f"   p50: {p50:.2f}ms")
    print(f"   p95: {p95:.2f}ms (target: <={target}ms)")
    print(f"   p99: {p99:.2f}ms")
    return p95


def _new_item(index):
    return {
        "id": f"data_{uuid.uuid4().hex}",
        "content": f"Perf note {index}",
        "deviceId": "desktop_linux_perf",
        "lastModified": int(time.time() * 1000) + index,
    }


@pytest.mark.performance
def test_list_synced_data_performance_baseline(authenticated_client):
    """GET /synced-data response time baseline"""
    for i in range(50):
        authenticated_client.post("/synced-data", json=_new_item(i))

    response_times = []
    for _ in range(100):
        start = time.perf_counter()
        response = authenticated_client.get("/synced-data")
        end = time.perf_counter()

        assert response.status_code == 200
        response_times.append((end - start) * 1000)  # Convert to ms

    p95 = _report("GET /synced-data", response_times, 200)
    assert p95 <= 200, f"p95 {p95:.2f}ms exceeds 200ms threshold"


@pytest.mark.performance
def test_create_synced_data_performance_baseline(authenticated_client):
    """POST /synced-data response time baseline"""
    response_times = []
    for i in range(50):
        start = time.perf_counter()
        response = authenticated_client.post("/synced-data", json=_new_item(i))
        end = time.perf_counter()

        assert response.status_code == 201
        response_times.append((end - start) * 1000)

    p95 = _report("POST /synced-data", response_times, 300)
    assert p95 <= 300, f"p95 {p95:.2f}ms exceeds 300ms threshold"


@pytest.mark.performance
def test_streak_stats_performance_baseline(authenticated_client):
    """POST /stats/streaks over a 30 habit, 90 day snapshot"""
    today = date(2025, 3, 8)
    completed = {(today - timedelta(days=i)).isoformat(): True for i in range(90)}
    snapshot = {
        "habits": [
            {"id": f"h{i}", "name": f"Habit {i}", "completed": completed} for i in range(30)
        ],
        "consumption": [
            {"date": (today - timedelta(days=i)).isoformat(), "cigarettes": i % 3}
            for i in range(90)
        ],
        "date": today.isoformat(),
    }

    response_times = []
    for _ in range(50):
        start = time.perf_counter()
        response = authenticated_client.post("/stats/streaks", json=snapshot)
        end = time.perf_counter()

        assert response.status_code == 200
        response_times.append((end - start) * 1000)

    assert response.json()["strict_streak"] == 90
    p95 = _report("POST /stats/streaks", response_times, 500)
    assert p95 <= 500, f"p95 {p95:.2f}ms exceeds 500ms threshold"
