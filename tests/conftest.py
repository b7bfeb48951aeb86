"""
Pytest configuration and fixtures for cascade-trader tests.

This conftest.py provides shared fixtures for all tests.
"""
import pytest

from core.history import InMemoryHistory
from core.params import ParameterStore, StrategyParameters, USDC, WBTC, WETH


@pytest.fixture
def params():
    """Default parameters (USDC stable, WETH/WBTC watchlist)"""
    return StrategyParameters()


@pytest.fixture
def param_store():
    return ParameterStore()


@pytest.fixture
def history():
    return InMemoryHistory()


@pytest.fixture
def balanced_values():
    """Portfolio exactly on target: 40/35/25 of $10,000"""
    return {USDC: 4000.0, WETH: 3500.0, WBTC: 2500.0}
