import pytest


@pytest.fixture(autouse=True)
def _ctx(beds):
    with beds["payments"].domain_context():
        yield
