import pytest


@pytest.fixture(autouse=True)
def _ctx(beds):
    with beds["delivery"].domain_context():
        yield
