"""
App-level tests: CORS configuration and health endpoints.
"""

import os
from unittest.mock import patch

import pytest

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "eyJhbGciOiJIUzI1NiJ9.eyJyb2xlIjoiYW5vbiJ9.dGVzdA")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "eyJhbGciOiJIUzI1NiJ9.eyJyb2xlIjoic2VydmljZSJ9.dGVzdA")

from fastapi.testclient import TestClient  # noqa: E402

from app.main import app, get_cors_origins  # noqa: E402


@pytest.fixture()
def client():
    return TestClient(app)


class TestCorsOrigins:
    def test_defaults_only(self, monkeypatch):
        monkeypatch.delenv("CORS_ORIGINS", raising=False)
        assert get_cors_origins() == ["http://localhost:3000"]

    def test_extra_origins_are_trimmed(self, monkeypatch):
        monkeypatch.setenv("CORS_ORIGINS", " https://taskmatrix.app , ,https://preview.taskmatrix.app")
        assert get_cors_origins() == [
            "http://localhost:3000",
            "https://taskmatrix.app",
            "https://preview.taskmatrix.app",
        ]

    def test_duplicates_dropped(self, monkeypatch):
        monkeypatch.setenv("CORS_ORIGINS", "http://localhost:3000,https://taskmatrix.app,https://taskmatrix.app")
        assert get_cors_origins() == ["http://localhost:3000", "https://taskmatrix.app"]


class TestHealth:
    def test_root(self, client):
        assert client.get("/").json()["message"] == "Taskmatrix API"

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_db_reachable(self, client):
        with patch("app.main.supabase_admin") as mock_sb:
            response = client.get("/health/db")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "database": "reachable"}
        mock_sb.table.assert_called_once_with("tasks")

    def test_db_unreachable(self, client):
        with patch("app.main.supabase_admin") as mock_sb:
            mock_sb.table.return_value.select.return_value.limit.return_value.execute.side_effect = Exception("timeout")
            response = client.get("/health/db")

        assert response.status_code == 503
        assert "timeout" in response.json()["detail"]

    def test_db_client_missing(self, client):
        with patch("app.main.supabase_admin", None):
            response = client.get("/health/db")

        assert response.status_code == 503
