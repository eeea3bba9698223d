"""Тесты API статистики по снимку локальных данных"""

HABITS = [
    {
        "id": "h1",
        "name": "Gym",
        "category": "health",
        "recurringDays": [1, 3, 5],
        "completed": {"2025-03-03": True, "2025-03-05": True, "2025-03-07": True},
    },
    {
        "id": "h2",
        "name": "Read",
        "category": "learning",
        "completed": {"2025-03-07": True, "2025-03-08": True, "2025-03-04": False},
    },
    {
        "id": "h3",
        "name": "Paused",
        "paused": True,
        "completed": {"2025-03-08": True},
    },
]

CONSUMPTION = [
    {"date": "2025-03-01", "cigarettes": 2, "joints": 0},
    {"date": "2025-03-06", "cigarettes": 0, "joints": 1},
]


def snapshot(**extra):
    return {"habits": HABITS, "consumption": CONSUMPTION, "date": "2025-03-08", **extra}


class TestDailyStats:
    """Тесты дневной доли выполнения"""

    def test_daily_ratio(self, authenticated_client):
        response = authenticated_client.post("/stats/daily", json=snapshot())

        assert response.status_code == 200
        assert response.json() == {
            "date": "2025-03-08",
            "completed": 1,
            "scheduled": 1,
            "ratio": 1.0,
            "percentage": 100,
        }

    def test_daily_ratio_without_habits(self, authenticated_client):
        response = authenticated_client.post("/stats/daily", json={"date": "2025-03-08"})
        data = response.json()
        assert (data["completed"], data["scheduled"], data["ratio"]) == (0, 0, 0.0)

    def test_device_header_is_accepted(self, authenticated_client):
        response = authenticated_client.post(
            "/stats/daily", json=snapshot(), headers={"X-Device-Id": "mobile_ios_b"}
        )
        assert response.status_code == 200

    def test_requires_authentication(self, test_client):
        assert test_client.post("/stats/daily", json=snapshot()).status_code == 401


class TestStreakStats:
    """Тесты серий"""

    def test_streaks(self, authenticated_client):
        response = authenticated_client.post("/stats/streaks", json=snapshot())

        assert response.status_code == 200
        data = response.json()
        assert data["chains"] == {"h1": 3, "h2": 2, "h3": 0}
        # сб 08.03 и пт 07.03 выполнены полностью, чт 06.03 - нет
        assert data["strict_streak"] == 2
        assert data["any_completion_streak"] == 2
        assert data["cigarette_free_streak"] == 7
        assert data["joint_free_streak"] == 2

    def test_lookback_limits_walk(self, authenticated_client):
        response = authenticated_client.post("/stats/streaks", json=snapshot(lookback_days=1))
        data = response.json()
        assert data["chains"]["h1"] == 0
        assert data["chains"]["h2"] == 1
        assert data["cigarette_free_streak"] == 1


class TestPatternStats:
    """Тесты статистики по дням недели"""

    def test_patterns(self, authenticated_client):
        response = authenticated_client.post("/stats/patterns", json=snapshot())

        assert response.status_code == 200
        data = response.json()
        assert [day["day_index"] for day in data["days"]] == list(range(7))
        tuesday = data["days"][2]
        assert (tuesday["completed"], tuesday["total"], tuesday["percentage"]) == (0, 1, 0)
        assert data["days"][4]["avg_joints"] == 1.0
        assert data["days"][6]["avg_cigarettes"] == 2.0
        assert data["best_day"] == 1
        assert data["worst_day"] == 2

    def test_patterns_by_category(self, authenticated_client):
        response = authenticated_client.post("/stats/patterns", json=snapshot(category="health"))
        data = response.json()
        assert [day["total"] for day in data["days"]] == [0, 1, 0, 1, 0, 1, 0]

    def test_patterns_without_data(self, authenticated_client):
        response = authenticated_client.post("/stats/patterns", json={"date": "2025-03-08"})
        data = response.json()
        assert data["best_day"] is None
        assert data["worst_day"] is None


class TestHistoryStats:
    """Тесты истории по периодам"""

    def test_week_history(self, authenticated_client):
        response = authenticated_client.post("/stats/history", json=snapshot(period="week"))

        assert response.status_code == 200
        data = response.json()
        assert data["period"] == "week"
        assert [entry["date"] for entry in data["entries"]] == [
            "2025-03-03",
            "2025-03-04",
            "2025-03-05",
            "2025-03-07",
            "2025-03-08",
        ]
        assert data["cigarettes_total"] == 0
        assert data["joints_total"] == 1

    def test_all_history_totals(self, authenticated_client):
        response = authenticated_client.post("/stats/history", json=snapshot(period="all"))
        data = response.json()
        assert (data["cigarettes_total"], data["joints_total"]) == (2, 1)
