"""Shared fixtures."""

import pytest

from fakes import FakeMCP


@pytest.fixture
def fake_mcp(monkeypatch) -> FakeMCP:
    """Patch the MCP SDK entry points used by provider connections."""
    from mcp_client import connection

    fake = FakeMCP()
    monkeypatch.setattr(connection, "stdio_client", fake.stdio_client)
    monkeypatch.setattr(connection, "ClientSession", fake.session)
    return fake
