# test_imports.py
import importlib

import pytest

MODULES = [
    "storytime_ai.cli.main",
    "storytime_ai.config.loader",
    "storytime_ai.core.accounting",
    "storytime_ai.core.chat_service",
    "storytime_ai.core.jobs",
    "storytime_ai.core.manager",
    "storytime_ai.core.moderation",
    "storytime_ai.sdk",
    "storytime_ai.storage.repository",
]


@pytest.mark.parametrize("name", MODULES)
def test_module_imports(name):
    assert importlib.import_module(name).__name__ == name


def test_sdk_exports_clients():
    from storytime_ai.sdk import LlamaApiClient, OpenAiApiClient, ReplicateApiClient

    assert OpenAiApiClient.provider_name == "openai"
    assert LlamaApiClient.provider_name == "llama"
    assert ReplicateApiClient is not None
