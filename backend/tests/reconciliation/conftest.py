import pytest

from tests.fakes import build_engine


@pytest.fixture
def engine(store, provider):
    return build_engine(store, provider)
