"""Тесты профилей, настроек приватности и публичных серий"""

import uuid

STREAK_PAYLOAD = {
    "date": "2025-03-08",
    "consumption": [
        {"date": "2025-03-01", "cigarettes": 2},
        {"date": "2025-03-05"},
    ],
}


def unique_username():
    return f"user_{uuid.uuid4().hex[:12]}"


class TestProfileUpdate:
    """Тесты обновления профиля"""

    def test_update_username_and_display_name(self, authenticated_client):
        username = unique_username()

        response = authenticated_client.put(
            "/profile", json={"username": username, "display_name": "  Alex  "}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["username"] == username
        assert data["display_name"] == "Alex"
        assert authenticated_client.get("/profile").json()["username"] == username

    def test_update_privacy(self, authenticated_client):
        privacy = {
            "public_profile": True,
            "public_habits": False,
            "public_cigarette_streak": False,
            "public_joint_streak": True,
        }

        response = authenticated_client.put("/profile", json={"privacy": privacy})

        assert response.status_code == 200
        assert response.json()["privacy"] == privacy

    def test_empty_update_keeps_profile(self, authenticated_client):
        before = authenticated_client.get("/profile").json()
        response = authenticated_client.put("/profile", json={})
        assert response.json() == before

    def test_username_taken(self, test_client, auth_headers_for):
        username = unique_username()
        first = auth_headers_for(f"user-{uuid.uuid4()}")
        second = auth_headers_for(f"user-{uuid.uuid4()}")
        assert test_client.put("/profile", json={"username": username}, headers=first).status_code == 200

        response = test_client.put("/profile", json={"username": username}, headers=second)

        assert response.status_code == 409
        assert response.json()["type"] == "https://api.habitsync.dev/errors/conflict"

    def test_same_username_can_be_saved_again(self, authenticated_client):
        username = unique_username()
        authenticated_client.put("/profile", json={"username": username})
        response = authenticated_client.put("/profile", json={"username": username})
        assert response.status_code == 200


class TestStreakPublishing:
    """Тесты публикации серий дней без потребления"""

    def test_publish_streaks(self, authenticated_client):
        response = authenticated_client.put("/profile/streaks", json=STREAK_PAYLOAD)

        assert response.status_code == 200
        assert response.json() == {"cigarettes": 7, "joints": 8}

    def test_publish_without_records(self, authenticated_client):
        response = authenticated_client.put("/profile/streaks", json={"date": "2025-03-08"})
        assert response.json() == {"cigarettes": 0, "joints": 0}

    def test_republish_overwrites(self, authenticated_client):
        authenticated_client.put("/profile/streaks", json=STREAK_PAYLOAD)
        payload = {
            "date": "2025-03-08",
            "consumption": [{"date": "2025-03-08", "cigarettes": 1}],
        }
        response = authenticated_client.put("/profile/streaks", json=payload)
        assert response.json() == {"cigarettes": 0, "joints": 1}


class TestPublicProfiles:
    """Тесты списка публичных профилей"""

    def _make_user(self, test_client, auth_headers_for, privacy):
        user_id = f"user-{uuid.uuid4()}"
        headers = auth_headers_for(user_id)
        test_client.put(
            "/profile",
            json={"username": unique_username(), "privacy": privacy},
            headers=headers,
        )
        test_client.put("/profile/streaks", json=STREAK_PAYLOAD, headers=headers)
        return user_id, headers

    def test_public_profiles_respect_privacy(self, test_client, auth_headers_for):
        public_id, _ = self._make_user(
            test_client,
            auth_headers_for,
            {"public_profile": True, "public_cigarette_streak": True, "public_joint_streak": False},
        )
        private_id, _ = self._make_user(
            test_client,
            auth_headers_for,
            {"public_profile": False, "public_cigarette_streak": True, "public_joint_streak": True},
        )
        viewer_id, viewer = self._make_user(
            test_client,
            auth_headers_for,
            {"public_profile": True, "public_cigarette_streak": True, "public_joint_streak": True},
        )

        response = test_client.get("/profiles/public", headers=viewer)

        assert response.status_code == 200
        profiles = {profile["id"]: profile for profile in response.json()}
        assert private_id not in profiles
        assert viewer_id not in profiles
        assert profiles[public_id]["cigarette_streak"] == 7
        assert profiles[public_id]["joint_streak"] is None

    def test_hiding_streak_after_publish(self, test_client, auth_headers_for):
        owner_id, owner = self._make_user(
            test_client,
            auth_headers_for,
            {"public_profile": True, "public_cigarette_streak": True, "public_joint_streak": True},
        )
        viewer = auth_headers_for(f"user-{uuid.uuid4()}")

        test_client.put(
            "/profile",
            json={"privacy": {"public_profile": True, "public_cigarette_streak": False}},
            headers=owner,
        )
        profiles = {p["id"]: p for p in test_client.get("/profiles/public", headers=viewer).json()}

        assert profiles[owner_id]["cigarette_streak"] is None
        assert profiles[owner_id]["joint_streak"] == 8
