# tests/conftest.py
from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from chatterbox_client.api.relay import RelayState, create_relay_app
from chatterbox_client.core.settings import ClientConfig
from chatterbox_client.db.session import create_cache_engine, create_tables, make_session_factory
from chatterbox_client.models.config_entry import IDENTITY_PRIVATE_KEY, IDENTITY_PUBLIC_KEY
from chatterbox_client.repositories.cache_repo import CacheRepository
from chatterbox_client.scripts.cli import ClientStack, build_stack
from chatterbox_client.services.crypto import CryptoCodec

TEST_DB_URL = "sqlite://"
TEST_API_URL = "http://relay.test/api"
BASE_TIME = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


@pytest.fixture(scope="session")
def identity_keys() -> dict[str, rsa.RSAPrivateKey]:
    """RSA identities shared across the test session; generation is slow."""
    return {
        user_id: CryptoCodec.generate_identity_keypair()
        for user_id in ("user-a", "user-b", "user-c")
    }


@pytest.fixture()
def engine() -> Iterator[Engine]:
    engine = create_cache_engine(TEST_DB_URL)
    create_tables(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return make_session_factory(engine)


@pytest.fixture()
def config() -> ClientConfig:
    return ClientConfig(
        api_url=TEST_API_URL,
        user_id="user-a",
        database_url=TEST_DB_URL,
        sync_interval_seconds=0.1,
        sync_max_backoff_seconds=0.2,
        http_timeout_seconds=5.0,
    )


def install_identity(session_factory: sessionmaker[Session], private_key: rsa.RSAPrivateKey) -> None:
    """Store an existing key pair as the local identity."""
    with session_factory.begin() as session:
        repo = CacheRepository(session)
        repo.set_config(IDENTITY_PRIVATE_KEY, CryptoCodec.export_private_key(private_key))
        repo.set_config(IDENTITY_PUBLIC_KEY, CryptoCodec.export_public_key(private_key))


class FakeClock:
    """Deterministic clock for the relay."""

    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture()
def relay_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def relay_state(relay_clock: FakeClock) -> RelayState:
    return RelayState(clock=relay_clock)


@pytest.fixture()
def relay_transport(relay_state: RelayState) -> httpx.ASGITransport:
    return httpx.ASGITransport(app=create_relay_app(relay_state))


@pytest.fixture()
def make_stack(
    relay_state: RelayState,
    relay_transport: httpx.ASGITransport,
    identity_keys: dict[str, rsa.RSAPrivateKey],
) -> Callable[[str], ClientStack]:
    """Build a client stack for a user with an installed, registered identity."""

    def _make(user_id: str) -> ClientStack:
        stack = build_stack(
            ClientConfig(api_url=TEST_API_URL, user_id=user_id, database_url=TEST_DB_URL),
            transport=relay_transport,
        )
        private_key = identity_keys[user_id]
        install_identity(stack.session_factory, private_key)
        relay_state.register(
            user_id,
            display_name=user_id,
            public_key=CryptoCodec.export_public_key(private_key),
        )
        return stack

    return _make
