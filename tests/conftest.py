"""Pytest configuration and shared fixtures."""

import logfire
import pytest


@pytest.fixture(scope="session", autouse=True)
def quiet_logfire():
    """Configure Logfire once so spans work without sending anything."""
    logfire.configure(send_to_logfire=False, console=False)
