import pytest

from config import settings

STRONG_SECRET = "s3ssion-signing-secret-for-tests-0123"


@pytest.mark.asyncio
async def test_liveness(api_client):
    response = await api_client.get("/health/live")
    assert response.status_code == 200
    assert response.json() == {"alive": True}


@pytest.mark.asyncio
async def test_readiness_reports_missing_identity_key(api_client, monkeypatch):
    monkeypatch.setattr(settings, "JWT_SECRET", STRONG_SECRET)
    monkeypatch.setattr(settings, "FIREBASE_API_KEY", "")
    response = await api_client.get("/health/ready")
    assert response.status_code == 503
    assert response.json() == {"ready": False, "missing": ["FIREBASE_API_KEY"]}

    monkeypatch.setattr(settings, "FIREBASE_API_KEY", "configured-key")
    response = await api_client.get("/health/ready")
    assert response.json() == {"ready": True}


@pytest.mark.asyncio
async def test_readiness_reports_default_session_secret(api_client, monkeypatch):
    monkeypatch.setattr(settings, "FIREBASE_API_KEY", "configured-key")
    monkeypatch.setattr(settings, "JWT_SECRET", "change_me_in_production")
    response = await api_client.get("/health/ready")
    assert response.status_code == 503
    assert response.json() == {"ready": False, "missing": ["JWT_SECRET"]}
