"""Pytest configuration for alertserver tests."""

import logging

import pytest


@pytest.fixture(autouse=True)
def _quiet_logging(caplog):
    caplog.set_level(logging.DEBUG, logger="alertserver")
    yield
