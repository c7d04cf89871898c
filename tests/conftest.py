"""Shared fixtures for the token tracker tests."""

import pytest
import pytest_asyncio

from utils.token_store import TokenStore
from utils.tokens import TokenConfig, anchored


@pytest.fixture
def config() -> TokenConfig:
    """Default limits: three tokens, one every twelve hours, pending refresh times."""
    return TokenConfig()


@pytest.fixture
def anchored_config(config) -> TokenConfig:
    return anchored(config)


@pytest_asyncio.fixture
async def store(tmp_path):
    """
    Why: Store tests need real SQL behaviour without touching the bot's database
    What: Provides an initialised TokenStore backed by a temporary SQLite file
    How: Builds a small pool against tmp_path and closes it after the test
    """
    token_store = TokenStore(str(tmp_path / "databases" / "tokens.db"))
    await token_store.init_pools(pool_size=2)
    await token_store.init_db()
    yield token_store
    await token_store.close()
