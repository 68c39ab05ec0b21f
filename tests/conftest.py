import pytest

from playcopilot.templates import InMemoryTemplateStore, default_templates


@pytest.fixture
def store():
    return InMemoryTemplateStore(default_templates())
