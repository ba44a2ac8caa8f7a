from urllib.parse import urlsplit

import pytest
import requests

from app import create_app
from auth import issue_token
from device_store import DeviceRegistry, DeviceStores
from settings import Settings

TEST_SECRET = "test-secret"


class FakeClock:
    def __init__(self, start=1_700_000_000_000):
        self.now = start

    def __call__(self):
        return self.now


class _FlaskResponse:
    def __init__(self, response):
        self._response = response
        self.status_code = response.status_code

    def json(self):
        data = self._response.get_json(silent=True)
        if data is None:
            raise ValueError("response body is not JSON")
        return data

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"HTTP {self.status_code}")


class FlaskSession:
    """requests.Session stand-in that sends requests to a Flask test client."""

    def __init__(self, client):
        self.client = client
        self.calls = []

    def request(self, method, url, headers=None, timeout=None, json=None, params=None):
        path = urlsplit(url).path
        self.calls.append((method, path, headers or {}))
        response = self.client.open(path, method=method, headers=headers or {},
                                    json=json, query_string=params)
        return _FlaskResponse(response)

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self.request("POST", url, **kwargs)


@pytest.fixture
def settings():
    return Settings(
        login_id="admin",
        login_pw="s3cret",
        jwt_secret=TEST_SECRET,
        token_expires_seconds=60,
        auth_enabled=True,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def stores(clock):
    return DeviceStores(registry=DeviceRegistry(clock=clock))


@pytest.fixture
def app(settings, stores):
    app = create_app(settings, stores)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(settings):
    token = issue_token("admin", settings.jwt_secret, settings.token_expires_seconds)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def flask_session(client):
    return FlaskSession(client)
