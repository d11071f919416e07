"""Shared test configuration and fixtures.

No test touches the network: :class:`tests._fakes.FakeSession` stands in
for ``requests.Session`` and serves canned responses keyed by URL.
"""

from __future__ import annotations

import pytest

from lite_reader.config import ReaderConfig
from lite_reader.transport import Transport
from tests._fakes import FakeSession


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep ``LITE_READER_*`` variables from the developer's shell out of tests."""
    monkeypatch.delenv("LITE_READER_TIMEOUT", raising=False)
    monkeypatch.delenv("LITE_READER_USER_AGENT", raising=False)


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def config() -> ReaderConfig:
    return ReaderConfig()


@pytest.fixture
def transport(config: ReaderConfig, session: FakeSession) -> Transport:
    return Transport(config, session=session)
