import pytest

from .fakes import make_embedding_client, make_llm


@pytest.fixture
def embedding_client():
    return make_embedding_client({})


@pytest.fixture
def llm():
    return make_llm("Answer from excerpts.")
