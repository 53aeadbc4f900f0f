import pytest
from fastapi.testclient import TestClient

from sessiongate.errors import ConfigurationError
from sessiongate.routes import create_app
from sessiongate.services.shared_secret import SharedSecret
from tests.utils import TEST_SECRET, make_backend_app, make_gateway_app, make_settings


def test_missing_secret_fails_fast(sql_store):
    with pytest.raises(ConfigurationError, match="SHARED_JWT_SECRET"):
        create_app(make_settings(shared_jwt_secret=None), session_store=sql_store)


def test_short_secret_fails_fast(sql_store):
    with pytest.raises(ConfigurationError, match="at least"):
        create_app(make_settings(shared_jwt_secret="too-short"), session_store=sql_store)


def test_missing_authorized_identity_fails_fast(sql_store):
    with pytest.raises(ConfigurationError, match="AUTHORIZED_USER_EMAIL"):
        create_app(make_settings(authorized_user_email=None), session_store=sql_store)


def test_gateway_without_web_login_secret_fails_fast(sql_store):
    with pytest.raises(ConfigurationError, match="WEB_LOGIN_SECRET"):
        make_gateway_app(make_backend_app(sql_store), web_login_secret=None)


def test_configured_fingerprint_must_match(sql_store):
    with pytest.raises(ConfigurationError, match="mismatch"):
        create_app(make_settings(shared_jwt_fingerprint="0000000000000000"), session_store=sql_store)


def test_matching_configured_fingerprint_is_accepted(sql_store):
    expected = SharedSecret.from_settings(make_settings()).fingerprint()
    app = create_app(make_settings(shared_jwt_fingerprint=expected), session_store=sql_store)
    with TestClient(app) as client:
        assert client.get("/health").json()["secretFingerprint"] == expected


def test_gateway_refuses_to_start_against_backend_with_other_secret(sql_store):
    backend_app = make_backend_app(sql_store, shared_jwt_secret=TEST_SECRET + "-rotated")
    gateway_app = make_gateway_app(backend_app, verify_backend_secret_on_startup=True)

    with pytest.raises(ConfigurationError, match="backend /health"):
        with TestClient(gateway_app):
            pass


def test_gateway_starts_against_matching_backend(sql_store):
    gateway_app = make_gateway_app(make_backend_app(sql_store), verify_backend_secret_on_startup=True)

    with TestClient(gateway_app) as client:
        body = client.get("/health").json()
    assert body["role"] == "gateway"


def test_docs_are_disabled_in_production(sql_store):
    client = TestClient(make_backend_app(sql_store, environment="production"))
    assert client.get("/docs").status_code == 404


def test_auto_create_tables_on_startup():
    app = create_app(make_settings(auto_create_tables=True))
    with TestClient(app) as client:
        assert client.get("/health").status_code == 200
