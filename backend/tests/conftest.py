"""
Shared fixtures: every test starts from fresh settings, store, engine and metrics.
"""
import os

# The background learning timer must not run during tests
os.environ.setdefault("AUTO_LEARNING_ENABLED", "false")

import pytest

from vizengine.core.config import reload_settings
from vizengine.core.performance import PerformanceMonitor
from vizengine.core.schemas import Dataset
from vizengine.core.storage import InMemoryStore, reset_store
from vizengine.services.engine import VisualizationEngine, reset_engine


@pytest.fixture(autouse=True)
def fresh_state():
    reload_settings()
    reset_store()
    reset_engine()
    PerformanceMonitor.clear_metrics()
    yield
    reset_engine()
    reset_store()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def engine(store):
    engine = VisualizationEngine(store=store)
    yield engine
    engine.shutdown()


@pytest.fixture
def sales_dataset():
    """100 rows: two regions, a numeric sales column and ISO dates."""
    rows = []
    for i in range(100):
        rows.append({
            "region": "north" if i % 2 == 0 else "south",
            "sales": float(100 + i * 3),
            "date": f"2024-{(i % 12) + 1:02d}-{(i % 28) + 1:02d}",
        })
    return Dataset(rows=rows)
