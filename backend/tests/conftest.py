"""
conftest.py — Shared pytest fixtures for the PipeTrak backend test suite.

Most tests are pure unit tests over the services in ``pipetrak.services``.
Store and API tests build their own in-memory SQLite database (aiosqlite);
no PostgreSQL or external service is needed.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``pipetrak.*`` imports resolve correctly regardless of where pytest is invoked.
"""

import sys
import os
import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any pipetrak imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)


PROJECT_ID = "11111111-1111-1111-1111-111111111111"


# ---------------------------------------------------------------------------
# Templates & engines
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def snapshot():
    """System templates only (seed data from pipetrak.config)."""
    from pipetrak.services.milestone_weights import default_snapshot
    return default_snapshot()


@pytest.fixture(scope="session")
def weight_resolver(snapshot):
    from pipetrak.services.milestone_weights import MilestoneWeightResolver
    return MilestoneWeightResolver(snapshot)


@pytest.fixture(scope="session")
def resolver():
    from pipetrak.services.identity_resolver import IdentityResolver
    return IdentityResolver()


@pytest.fixture(scope="session")
def calculator():
    from pipetrak.services.progress_calculator import ProgressCalculator
    return ProgressCalculator()


@pytest.fixture(scope="session")
def aggregator(calculator):
    from pipetrak.services.quantity_aggregator import QuantityAggregator
    return QuantityAggregator(calculator)


@pytest.fixture(scope="session")
def importer(resolver, calculator):
    from pipetrak.services.import_pipeline import TakeoffImporter
    return TakeoffImporter(resolver, calculator)


@pytest.fixture(scope="session")
def threaded_pipe_table(weight_resolver):
    """LF template: five quantity milestones at 16 + Punch 5, Test 10, Restore 5."""
    return weight_resolver.resolve("threaded_pipe")


@pytest.fixture(scope="session")
def field_weld_table(weight_resolver):
    """Fit-up 10, Weld Complete 60, Punch 10, Test 15, Restore 5."""
    return weight_resolver.resolve("field_weld")


# ---------------------------------------------------------------------------
# Take-off rows
# ---------------------------------------------------------------------------

@pytest.fixture
def pipe_row():
    """50 LF of 1" threaded pipe on drawing P-001."""
    from pipetrak.models.component_schema import ImportRow
    return ImportRow(type="threaded_pipe", drawing="P-001", cmdtyCode="PIPE-SCH40", size="1", qty=50)


@pytest.fixture
def takeoff_rows():
    """
    Mixed take-off:
      row 1  spool SP-001               -> 1 component
      row 2  field_weld W-001           -> 1 component
      row 3  valve VBALU-001 2", qty 3  -> 3 components (seq 1..3)
      row 4  instrument on P-001, qty 2 -> 1 component (never exploded)
      row 5  threaded pipe 50 LF        -> 1 aggregate
      row 6  same pipe, 30 LF           -> folded into row 5's aggregate
    """
    return [
        {"type": "spool", "drawing": "P-001", "cmdtyCode": "SP-001", "qty": 1},
        {"type": "field_weld", "drawing": "P-001", "cmdtyCode": "W-001", "qty": 1},
        {"type": "valve", "drawing": "P-001", "cmdtyCode": "VBALU-001", "size": "2", "qty": 3},
        {"type": "instrument", "drawing": "P-001", "cmdtyCode": "PT-100", "size": "1/2", "qty": 2},
        {"type": "threaded_pipe", "drawing": "P-001", "cmdtyCode": "PIPE-SCH40", "size": "1", "qty": 50},
        {"type": "threaded_pipe", "drawing": " p-001 ", "cmdtyCode": "PIPE-SCH40", "size": "1", "qty": 30},
    ]


# ---------------------------------------------------------------------------
# Database (aiosqlite, in memory)
# ---------------------------------------------------------------------------

@pytest.fixture
def sqlite_engine():
    """
    Async SQLite engine on a single shared in-memory connection. Tables are
    created and system templates seeded by the test body (inside its own
    event loop) through pipetrak.db.create_schema.
    """
    from sqlalchemy.ext.asyncio import create_async_engine
    from sqlalchemy.pool import StaticPool
    return create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
