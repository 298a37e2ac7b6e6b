from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import Session, select

from kidpoints.exceptions import (
    ConcurrentUpdateError,
    InsufficientBalanceError,
    LedgerCorruptionError,
    ValidationError,
)
from kidpoints.models import HistoryFilter, LedgerReason
from kidpoints.persistence import PointLedgerEntry, read_session, unit_of_work

from conftest import FAMILY, fund


def test_balance_is_zero_without_entries(engine, ledger, child_id) -> None:
    with read_session(engine) as session:
        assert ledger.balance_of(session, child_id) == 0
        assert ledger.history_of(session, child_id) == []


def test_append_tracks_running_balance(engine, ledger, child_id) -> None:
    with unit_of_work(engine) as session:
        first = ledger.append(session, child_id, 30, LedgerReason.TASK_AWARD, "a-1")
        second = ledger.append(session, child_id, -10, LedgerReason.REDEMPTION_SPEND, "r-1")
        third = ledger.append(session, child_id, "5", LedgerReason.MANUAL_ADJUSTMENT)

    assert (first.sequence, first.balance_after) == (1, 30)
    assert (second.sequence, second.balance_after) == (2, 20)
    assert (third.sequence, third.balance_after) == (3, 25)
    assert second.description == "Reward redeemed"

    with read_session(engine) as session:
        assert ledger.balance_of(session, child_id) == 25
        assert ledger.derive_balance(session, child_id) == 25
        assert ledger.verify(session, child_id) == 25


def test_debit_beyond_balance_is_rejected_before_writing(engine, ledger, child_id) -> None:
    fund(engine, ledger, child_id, 20)

    with pytest.raises(InsufficientBalanceError) as excinfo:
        with unit_of_work(engine) as session:
            ledger.append(session, child_id, -21, LedgerReason.REDEMPTION_SPEND, "r-1")

    assert excinfo.value.details == {"balance": 20, "delta": -21}
    with read_session(engine) as session:
        assert ledger.balance_of(session, child_id) == 20
        assert len(ledger.history_of(session, child_id)) == 1


def test_debit_to_exactly_zero_is_allowed(engine, ledger, child_id) -> None:
    fund(engine, ledger, child_id, 20)

    with unit_of_work(engine) as session:
        entry = ledger.append(session, child_id, -20, LedgerReason.MANUAL_ADJUSTMENT)

    assert entry.balance_after == 0


@pytest.mark.parametrize("delta", [0, "1.5", True, "Infinity", "sNaN", 10**13])
def test_malformed_deltas_are_rejected(engine, ledger, child_id, delta) -> None:
    with pytest.raises(ValidationError):
        with unit_of_work(engine) as session:
            ledger.append(session, child_id, delta, LedgerReason.MANUAL_ADJUSTMENT)


def test_history_filters_and_ordering(engine, ledger, child_id) -> None:
    start = datetime(2024, 1, 1, 8, 0)
    with unit_of_work(engine) as session:
        ledger.append(session, child_id, 10, LedgerReason.TASK_AWARD, "a-1", at=start)
        ledger.append(session, child_id, 15, LedgerReason.TASK_AWARD, "a-2", at=start + timedelta(days=1))
        ledger.append(session, child_id, -5, LedgerReason.REDEMPTION_SPEND, "r-1", at=start + timedelta(days=2))

    with read_session(engine) as session:
        newest = ledger.history_of(session, child_id, HistoryFilter())
        oldest = ledger.history_of(session, child_id, HistoryFilter(newest_first=False))
        awards = ledger.history_of(session, child_id, HistoryFilter(reasons=[LedgerReason.TASK_AWARD]))
        windowed = ledger.history_of(
            session,
            child_id,
            HistoryFilter(start=start + timedelta(hours=12), end=start + timedelta(days=1, hours=12)),
        )
        limited = ledger.history_of(session, child_id, HistoryFilter(limit=1))

    assert [entry.reference_id for entry in newest] == ["r-1", "a-2", "a-1"]
    assert [entry.reference_id for entry in oldest] == ["a-1", "a-2", "r-1"]
    assert [entry.reference_id for entry in awards] == ["a-2", "a-1"]
    assert [entry.reference_id for entry in windowed] == ["a-2"]
    assert [entry.reference_id for entry in limited] == ["r-1"]
    assert sum(entry.delta for entry in newest) == newest[0].balance_after


def test_summary_totals(engine, ledger, child_id) -> None:
    with unit_of_work(engine) as session:
        ledger.append(session, child_id, 40, LedgerReason.TASK_AWARD, "a-1")
        ledger.append(session, child_id, 10, LedgerReason.MANUAL_ADJUSTMENT)
        ledger.append(session, child_id, -30, LedgerReason.REDEMPTION_SPEND, "r-1")

    with read_session(engine) as session:
        summary = ledger.summary(session, child_id)

    assert summary.balance == 20
    assert summary.total_earned == 40
    assert summary.total_spent == 30
    assert summary.entry_count == 3


def test_export_csv_lists_entries_oldest_first(engine, ledger, child_id) -> None:
    with unit_of_work(engine) as session:
        ledger.append(session, child_id, 12, LedgerReason.TASK_AWARD, "a-1", description="Dishes")
        ledger.append(session, child_id, -2, LedgerReason.REDEMPTION_SPEND, "r-1")

    with read_session(engine) as session:
        exported = ledger.export_csv(session, child_id)

    lines = exported.strip().splitlines()
    assert lines[0] == "timestamp,reason,reference,description,delta,balance"
    assert lines[1].endswith("task_award,a-1,Dishes,+12,12")
    assert lines[2].endswith("redemption_spend,r-1,Reward redeemed,-2,10")


def test_duplicate_sequence_surfaces_as_conflict(engine, ledger, child_id, monkeypatch) -> None:
    fund(engine, ledger, child_id, 5)

    with pytest.raises(ConcurrentUpdateError):
        with unit_of_work(engine) as session:
            session.add(
                PointLedgerEntry(
                    child_id=child_id,
                    sequence=2,
                    delta=1,
                    reason=LedgerReason.MANUAL_ADJUSTMENT,
                    balance_after=6,
                )
            )
            session.flush()
            # Simulate a writer that read the tail before sequence 2 landed.
            stale = session.exec(select(PointLedgerEntry).where(PointLedgerEntry.sequence == 1)).first()
            monkeypatch.setattr(ledger, "_tail", lambda *_args, **_kwargs: stale)
            ledger.append(session, child_id, 3, LedgerReason.MANUAL_ADJUSTMENT)


def test_verify_detects_broken_chain(engine, ledger, child_id) -> None:
    fund(engine, ledger, child_id, 10)
    with Session(engine) as session:
        session.add(
            PointLedgerEntry(
                child_id=child_id,
                sequence=2,
                delta=5,
                reason=LedgerReason.MANUAL_ADJUSTMENT,
                balance_after=99,
            )
        )
        session.commit()

    with read_session(engine) as session:
        with pytest.raises(LedgerCorruptionError):
            ledger.verify(session, child_id)


def test_leaderboard_orders_by_balance(engine, ledger, catalog, child_id) -> None:
    with unit_of_work(engine) as session:
        ben = catalog.add_child(session, FAMILY, "Ben").child_id
        catalog.add_child(session, "other-family", "Zed")
    fund(engine, ledger, child_id, 10)
    fund(engine, ledger, ben, 25)

    with read_session(engine) as session:
        board = ledger.leaderboard(session, FAMILY)

    assert [entry.name for entry in board] == ["Ben", "Ava"]
    assert [entry.balance for entry in board] == [25, 10]


def test_history_returns_every_entry_by_default(engine, ledger, child_id) -> None:
    with unit_of_work(engine) as session:
        for _ in range(60):
            ledger.append(session, child_id, 1, LedgerReason.MANUAL_ADJUSTMENT)

    with read_session(engine) as session:
        history = ledger.history_of(session, child_id)
        assert len(history) == 60
        assert sum(entry.delta for entry in history) == ledger.balance_of(session, child_id) == 60
        assert len(ledger.history_of(session, child_id, HistoryFilter(limit=10))) == 10
        with pytest.raises(ValidationError):
            ledger.history_of(session, child_id, HistoryFilter(limit=-1))


def test_unknown_reason_is_a_validation_error(engine, ledger, child_id) -> None:
    with pytest.raises(ValidationError, match="bonus"):
        with unit_of_work(engine) as session:
            ledger.append(session, child_id, 5, "bonus")

    with read_session(engine) as session:
        assert ledger.history_of(session, child_id) == []


def test_aware_timestamps_are_stored_as_naive_utc(engine, ledger, child_id) -> None:
    moment = datetime(2024, 1, 1, 9, 0, tzinfo=timezone(timedelta(hours=1)))
    with unit_of_work(engine) as session:
        entry = ledger.append(session, child_id, 10, LedgerReason.MANUAL_ADJUSTMENT, at=moment)
    assert entry.created_at == datetime(2024, 1, 1, 8, 0)

    with read_session(engine) as session:
        since = HistoryFilter(start=datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc))
        (stored,) = ledger.history_of(session, child_id, since)
        assert stored.created_at == datetime(2024, 1, 1, 8, 0)
        assert stored.created_at.tzinfo is None
