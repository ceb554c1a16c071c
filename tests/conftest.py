import pytest

from config import Config


@pytest.fixture
def config():
    return Config(
        SITE_URL="https://mysite.com",
        BATCH_DELAY_SECONDS=0,
        POST_DELAY_SECONDS=0,
    )
