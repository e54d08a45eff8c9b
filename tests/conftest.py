"""Shared fixtures for the pybsn test suite."""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from pytest_httpx import HTTPXMock

from pybsn.client import BSNClient
from pybsn.core.auth import Authenticator
from pybsn.core.config import DEFAULT_TOKEN_ENDPOINT, Config
from pybsn.core.models import Network

TOKEN_URL = DEFAULT_TOKEN_ENDPOINT
API = "https://api.bsn.cloud/2022/06/REST"
UPLOADS = "https://api.bsn.cloud/Upload/2019/03/REST/upload-sessions"

MAIN_NETWORK = Network(id=1, name="Main")
STAGING_NETWORK = Network(id=2, name="Staging")


class FakeClock:
    """Deterministic clock; ``sleep`` advances time instead of blocking."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def add_token(httpx_mock: HTTPXMock, token: str = "token-1", expires_in: int = 3600) -> None:
    """Register one successful token exchange."""
    httpx_mock.add_response(
        url=TOKEN_URL,
        method="POST",
        json={"access_token": token, "token_type": "Bearer", "expires_in": expires_in},
    )


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's own credentials out of the tests."""
    for var in ("BS_CLIENT_ID", "BS_SECRET", "BS_NETWORK", "PYBSN_CONFIG", "XDG_CONFIG_HOME"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> Config:
    return Config(client_id="test-client", client_secret="test-secret")


@pytest.fixture
def auth(config: Config, clock: FakeClock) -> Iterator[Authenticator]:
    authenticator = Authenticator(config, clock=clock)
    yield authenticator
    authenticator.close()


@pytest.fixture
def client(config: Config, clock: FakeClock) -> Iterator[BSNClient]:
    """A client with no network selected."""
    bsn = BSNClient(config, clock=clock, monotonic=clock, sleep=clock.sleep)
    yield bsn
    bsn.close()


@pytest.fixture
def scoped_client(client: BSNClient) -> BSNClient:
    """A client whose network is already selected (no server round trip)."""
    client.network._current = MAIN_NETWORK
    return client
