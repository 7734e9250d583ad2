import pytest


@pytest.fixture(autouse=True)
def _ctx(beds):
    with beds["ordering"].domain_context():
        yield
