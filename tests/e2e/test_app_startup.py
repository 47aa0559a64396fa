import pytest
from unittest.mock import patch, AsyncMock, MagicMock
from fastapi.testclient import TestClient
from main import app


def test_app_startup_and_healthcheck():
    """
    App lifespan wiring and the health endpoint.
    """
    mock_redis = MagicMock()
    mock_redis.aclose = AsyncMock()

    # Only Redis and the limiter touch the network during startup
    with patch("main.redis.from_url", return_value=mock_redis), \
         patch("main.FastAPILimiter.init", new=AsyncMock()):

        with TestClient(app) as client:
            response = client.get("/health")

            assert response.status_code == 200
            assert response.json()["status"] == "ok"

            assert app.state.queue.redis is mock_redis
            assert app.state.dispatcher.email is app.state.gateways.email

    mock_redis.aclose.assert_awaited_once()
