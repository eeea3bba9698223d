"""Тесты для проверки токенов identity-провайдера"""

from datetime import datetime, timedelta, timezone

from jose import jwt

from habitsync.auth import SECRET_KEY, create_access_token, decode_identity
from habitsync.config import AUTH_JWT_ALGORITHM


class TestIdentityTokens:
    """Тесты проверки JWT"""

    def test_subject_is_user_id(self):
        token = create_access_token("user-42")
        assert decode_identity(token) == "user-42"

    def test_valid_token_grants_access(self, test_client, auth_headers):
        response = test_client.get("/synced-data", headers=auth_headers)
        assert response.status_code == 200
        assert response.json() == {"items": [], "total": 0}

    def test_missing_token(self, test_client):
        response = test_client.get("/profile")
        assert response.status_code == 401

    def test_malformed_token(self, test_client):
        response = test_client.get("/profile", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_expired_token(self, test_client):
        token = create_access_token("user-expired", expires_delta=timedelta(minutes=-1))
        response = test_client.get("/profile", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_wrong_signature(self, test_client):
        token = jwt.encode({"sub": "user-forged"}, "other-secret", algorithm=AUTH_JWT_ALGORITHM)
        response = test_client.get("/profile", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_token_without_subject(self, test_client):
        expire = datetime.now(timezone.utc) + timedelta(minutes=5)
        token = jwt.encode({"exp": expire}, SECRET_KEY, algorithm=AUTH_JWT_ALGORITHM)
        response = test_client.get("/profile", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401


class TestProfileProvisioning:
    """Тесты создания профиля при первом обращении"""

    def test_first_request_creates_profile_with_defaults(self, authenticated_client, user_id):
        response = authenticated_client.get("/profile")

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == user_id
        assert data["username"] is None
        assert data["privacy"] == {
            "public_profile": False,
            "public_habits": False,
            "public_cigarette_streak": True,
            "public_joint_streak": True,
        }

    def test_profile_is_provisioned_once(self, authenticated_client, user_id):
        first = authenticated_client.get("/profile").json()
        second = authenticated_client.get("/profile").json()
        assert first == second
