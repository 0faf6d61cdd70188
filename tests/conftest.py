"""
Shared test fixtures for the Corvus test suite.
"""

import logging

import pytest

from corvus.di import Container


@pytest.fixture
def container():
    return Container()


@pytest.fixture
def corvus_logs(caplog):
    """caplog capturing every ``corvus.*`` logger at DEBUG."""
    caplog.set_level(logging.DEBUG, logger="corvus")
    return caplog
