from datetime import datetime, timezone

from app.core.platform_registry import ALL_PLATFORMS
from app.models.sync_models import SyncOutcome
from app.sync.status_store import MAX_ERROR_LENGTH, SyncStatusStore
from tests.conftest import add_company

NOW = datetime(2026, 10, 19, 6, 0, tzinfo=timezone.utc)


def test_ensure_rows_creates_missing_and_keeps_existing(engine):
    acme = add_company(engine, "Acme")
    store = SyncStatusStore(engine)
    store.record_result(acme.id, "ga", SyncOutcome.SUCCESS, window=("2026-07-21", "2026-10-19"), now=NOW)

    assert store.ensure_rows([acme.id], ALL_PLATFORMS)
    assert store.ensure_rows([acme.id], ALL_PLATFORMS)

    rows = {r.platform: r for r in store.list_all()}
    assert set(rows) == {"ga", "gsc", "youtube", "linkedin"}
    assert rows["ga"].sync_state == "success"
    assert rows["ga"].last_success_at is not None
    assert rows["gsc"].sync_state == "idle"
    assert rows["gsc"].last_success_at is None


def test_failures_accumulate_and_success_resets(engine):
    acme = add_company(engine, "Acme")
    store = SyncStatusStore(engine)

    store.record_result(acme.id, "gsc", SyncOutcome.API_ERROR, error="503 upstream", now=NOW)
    store.record_result(acme.id, "gsc", SyncOutcome.AUTH_REQUIRED, error="MISSING_SCOPE", now=NOW)

    row = store.get(acme.id, "gsc")
    assert row.consecutive_failures == 2
    assert row.sync_state == "error"
    assert row.last_error == "auth_required: MISSING_SCOPE"
    assert row.last_success_at is None
    assert row.last_attempt_at is not None

    store.record_result(acme.id, "gsc", SyncOutcome.SUCCESS, window=("2026-10-10", "2026-10-19"), now=NOW)

    row = store.get(acme.id, "gsc")
    assert row.consecutive_failures == 0
    assert row.last_error is None
    assert row.sync_state == "success"
    assert row.data_start_date == "2026-10-10"
    assert row.data_end_date == "2026-10-19"


def test_data_range_only_grows(engine):
    acme = add_company(engine, "Acme")
    store = SyncStatusStore(engine)
    store.record_result(acme.id, "ga", SyncOutcome.SUCCESS, window=("2026-07-21", "2026-10-18"), now=NOW)
    store.record_result(acme.id, "ga", SyncOutcome.SUCCESS, window=("2026-10-18", "2026-10-19"), now=NOW)

    row = store.get(acme.id, "ga")
    assert (row.data_start_date, row.data_end_date) == ("2026-07-21", "2026-10-19")


def test_skipped_outcome_leaves_row_untouched(engine):
    acme = add_company(engine, "Acme")
    store = SyncStatusStore(engine)
    store.ensure_rows([acme.id], ["youtube"])

    store.record_result(acme.id, "youtube", SyncOutcome.SKIPPED, error="No mapping configured")

    row = store.get(acme.id, "youtube")
    assert row.sync_state == "idle"
    assert row.last_attempt_at is None
    assert row.consecutive_failures == 0


def test_long_errors_are_truncated(engine):
    acme = add_company(engine, "Acme")
    store = SyncStatusStore(engine)
    store.record_result(acme.id, "ga", SyncOutcome.API_ERROR, error="x" * 2000, now=NOW)

    assert len(store.get(acme.id, "ga").last_error) == MAX_ERROR_LENGTH


def test_store_failures_are_swallowed():
    # Unbound store: every statement fails
    store = SyncStatusStore(None)  # type: ignore[arg-type]
    store.record_result("missing", "ga", SyncOutcome.API_ERROR, error="boom")
    assert store.ensure_rows(["missing"], ["ga"]) is False
