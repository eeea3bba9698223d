"""
Тесты для проверки валидации входных данных
Негативные сценарии для снимков статистики, синхронизируемых данных и профиля
"""

import pytest


def snapshot(habits=None, **extra):
    return {"habits": habits or [], "date": "2025-03-08", **extra}


class TestSnapshotValidation:
    """Тесты валидации снимка локальных данных"""

    def test_habit_xss_attempt(self, authenticated_client):
        """Негативный тест: попытка XSS через название привычки"""
        response = authenticated_client.post(
            "/stats/daily",
            json=snapshot([{"id": "h1", "name": "<script>alert('xss')</script>"}]),
        )
        assert response.status_code == 422
        data = response.json()
        error_messages = " ".join(err["message"].lower() for err in data.get("errors", []))
        assert "недопустимый символ" in error_messages

    def test_empty_habit_name(self, authenticated_client):
        response = authenticated_client.post(
            "/stats/daily", json=snapshot([{"id": "h1", "name": "   "}])
        )
        assert response.status_code == 422

    @pytest.mark.parametrize("days", [[7], [-1], [0, 1, 9]])
    def test_invalid_recurring_days(self, authenticated_client, days):
        response = authenticated_client.post(
            "/stats/daily",
            json=snapshot([{"id": "h1", "name": "Run", "recurringDays": days}]),
        )
        assert response.status_code == 422

    @pytest.mark.parametrize("key", ["2025/03/08", "08-03-2025", "2025-02-30"])
    def test_invalid_completion_dates(self, authenticated_client, key):
        response = authenticated_client.post(
            "/stats/daily",
            json=snapshot([{"id": "h1", "name": "Run", "completed": {key: True}}]),
        )
        assert response.status_code == 422

    def test_invalid_reminder_time(self, authenticated_client):
        response = authenticated_client.post(
            "/stats/daily",
            json=snapshot([{"id": "h1", "name": "Run", "reminderTime": "24:30"}]),
        )
        assert response.status_code == 422

    def test_duplicate_habit_ids(self, authenticated_client):
        response = authenticated_client.post(
            "/stats/daily",
            json=snapshot([{"id": "h1", "name": "Run"}, {"id": "h1", "name": "Read"}]),
        )
        assert response.status_code == 422

    def test_duplicate_consumption_dates(self, authenticated_client):
        response = authenticated_client.post(
            "/stats/streaks",
            json=snapshot(
                consumption=[
                    {"date": "2025-03-01", "cigarettes": 1},
                    {"date": "2025-03-01", "joints": 1},
                ]
            ),
        )
        assert response.status_code == 422

    def test_negative_consumption(self, authenticated_client):
        response = authenticated_client.post(
            "/stats/streaks",
            json=snapshot(consumption=[{"date": "2025-03-01", "cigarettes": -3}]),
        )
        assert response.status_code == 422

    def test_too_many_habits(self, authenticated_client):
        habits = [{"id": f"h{i}", "name": f"Habit {i}"} for i in range(201)]
        response = authenticated_client.post("/stats/daily", json=snapshot(habits))
        assert response.status_code == 422

    @pytest.mark.parametrize("lookback", [0, 5000])
    def test_lookback_out_of_range(self, authenticated_client, lookback):
        response = authenticated_client.post(
            "/stats/streaks", json=snapshot(lookback_days=lookback)
        )
        assert response.status_code == 422

    def test_unknown_period(self, authenticated_client):
        response = authenticated_client.post("/stats/history", json=snapshot(period="year"))
        assert response.status_code == 422


class TestSyncedDataValidation:
    """Тесты валидации синхронизируемых элементов"""

    def test_content_too_long(self, authenticated_client):
        response = authenticated_client.post(
            "/synced-data",
            json={"id": "data_long", "content": "A" * 10001, "deviceId": "d", "lastModified": 1},
        )
        assert response.status_code == 422

    def test_negative_timestamp(self, authenticated_client):
        response = authenticated_client.post(
            "/synced-data",
            json={"id": "data_neg", "content": "x", "deviceId": "d", "lastModified": -1},
        )
        assert response.status_code == 422

    def test_zero_version(self, authenticated_client):
        response = authenticated_client.post(
            "/synced-data",
            json={
                "id": "data_v0",
                "content": "x",
                "deviceId": "d",
                "lastModified": 1,
                "version": 0,
            },
        )
        assert response.status_code == 422


class TestProfileValidation:
    """Тесты валидации профиля"""

    @pytest.mark.parametrize("username", ["ab", "A" * 31, "bad name", "drop;table"])
    def test_invalid_username(self, authenticated_client, username):
        response = authenticated_client.put("/profile", json={"username": username})
        assert response.status_code == 422

    def test_display_name_xss(self, authenticated_client):
        response = authenticated_client.put(
            "/profile", json={"display_name": "<img src=x onerror=alert(1)>"}
        )
        assert response.status_code == 422
