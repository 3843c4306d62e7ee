import pytest
from typer.testing import CliRunner

from helpers import FAST_POLICY, FakeTransport, encode_token
from wtmigrate.core.deployment import Deployment
from wtmigrate.core.token_store import TokenStore
from wtmigrate.domain.models.token import Token
from wtmigrate.infrastructure.config.settings import clear_test_config
from wtmigrate.infrastructure.resilience.call_dispatcher import CallDispatcher


@pytest.fixture
def master_token_string() -> str:
    return encode_token({"jti": "m1", "iat": 1500000000, "ca": ["*"]})


@pytest.fixture
def tenant_token_string() -> str:
    return encode_token({"jti": "t1", "iat": 1500000000, "ten": "acme"})


@pytest.fixture
def make_deployment(master_token_string):
    """Returns ``async (handler, **dispatcher_kwargs) -> (deployment, transport)``."""

    async def factory(handler, tokens=None, policy=FAST_POLICY, max_concurrent=10, delay=0.0):
        store = TokenStore()
        for token_string in tokens or [master_token_string]:
            await store.add_token(Token(token_string))
        transport = FakeTransport(handler, delay=delay)
        dispatcher = CallDispatcher(transport, max_concurrent=max_concurrent, policy=policy)
        return Deployment(store, dispatcher), transport

    return factory


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture(autouse=True)
def reset_test_config():
    yield
    clear_test_config()
