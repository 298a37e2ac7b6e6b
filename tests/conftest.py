from __future__ import annotations

import pytest

from kidpoints.catalog import Catalog
from kidpoints.inventory import RewardInventoryBook
from kidpoints.ledger import PointLedger
from kidpoints.models import LedgerReason
from kidpoints.notifications import NotificationCenter
from kidpoints.ops import StructuredLogger
from kidpoints.persistence import create_db_and_tables, create_engine_for, unit_of_work
from kidpoints.service import KidPoints

FAMILY = "fam-1"


@pytest.fixture()
def engine(tmp_path):
    engine = create_engine_for(f"sqlite:///{tmp_path / 'kidpoints.db'}", echo=False)
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def ledger() -> PointLedger:
    return PointLedger()


@pytest.fixture()
def inventory() -> RewardInventoryBook:
    return RewardInventoryBook()


@pytest.fixture()
def catalog(inventory) -> Catalog:
    return Catalog(inventory)


@pytest.fixture()
def child_id(engine, catalog) -> str:
    with unit_of_work(engine) as session:
        return catalog.add_child(session, FAMILY, "Ava").child_id


@pytest.fixture()
def app(engine) -> KidPoints:
    return KidPoints(engine, notifier=NotificationCenter(), logger=StructuredLogger())


def fund(engine, ledger: PointLedger, child_id: str, points: int) -> None:
    with unit_of_work(engine) as session:
        ledger.append(session, child_id, points, LedgerReason.MANUAL_ADJUSTMENT)
