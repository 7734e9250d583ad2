import pytest


@pytest.fixture(autouse=True)
def _ctx(beds):
    with beds["inventory"].domain_context():
        yield
