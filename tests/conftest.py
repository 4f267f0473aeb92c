"""Shared fixtures for wallet agent tests."""

import pytest


class FakeHandle:
    def __init__(self):
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """call_later stand-in that only runs callbacks when told to."""

    def __init__(self):
        self.calls = []

    def __call__(self, delay, callback):
        handle = FakeHandle()
        self.calls.append((delay, callback, handle))
        return handle

    def run_pending(self):
        calls, self.calls = self.calls, []
        for _, callback, handle in calls:
            if not handle.cancelled:
                callback()


@pytest.fixture
def fake_scheduler():
    return FakeScheduler()


@pytest.fixture
def tmp_config_dir(tmp_path):
    """Provide a temporary config directory."""
    config_dir = tmp_path / "config" / "walletagent"
    config_dir.mkdir(parents=True)
    return config_dir


@pytest.fixture
def tmp_sessions_dir(tmp_path):
    """Provide a temporary sessions directory."""
    sessions_dir = tmp_path / "sessions"
    sessions_dir.mkdir(parents=True)
    return sessions_dir
