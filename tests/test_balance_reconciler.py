from datetime import date

import pytest

from worktime.core.exceptions import IntegrityError, NotFoundError, ValidationError
from worktime.models.audit_log import AuditLog
from worktime.models.period_balance import PeriodBalance
from worktime.services.balance_reconciler import periods_covering, resolve_through, week_period


@pytest.fixture
def worked_week(make_employee, add_entry):
    """Hired Monday 2024-03-11: 9h, 8h, 7.5h, then nothing Thursday and Friday."""
    employee = make_employee(hire_date=date(2024, 3, 11))
    add_entry(employee, date(2024, 3, 11), 9.0)
    add_entry(employee, date(2024, 3, 12), 8.0)
    add_entry(employee, date(2024, 3, 13), 7.5)
    return employee


def snapshot(service, employee, period_type, key):
    rows = service.get_period_balances(employee.id, period_type)
    return next(row for row in rows if row.period_key == key)


def test_resolve_through_formats():
    assert resolve_through("2024-02") == date(2024, 2, 29)
    assert resolve_through("2024-12") == date(2024, 12, 31)
    assert resolve_through("2024-03-10") == date(2024, 3, 10)
    assert resolve_through(date(2024, 1, 5)) == date(2024, 1, 5)
    for bad in ("2024-13", "March", "", "2024-02-30"):
        with pytest.raises(ValidationError):
            resolve_through(bad)


def test_week_keys_use_iso_weeks():
    assert week_period(date(2024, 3, 4)).key == "2024-W10"
    assert week_period(date(2024, 3, 10)).start == date(2024, 3, 4)
    assert week_period(date(2024, 12, 30)).key == "2025-W01"
    periods = periods_covering([date(2024, 3, 11), date(2024, 3, 12)])
    assert [(p.period_type, p.key) for p in periods] == [
        ("month", "2024-03"), ("day", "2024-03-11"), ("week", "2024-W11"), ("day", "2024-03-12"),
    ]


def test_ensure_creates_snapshots_and_postings(service, worked_week, assert_chain):
    result = service.ensure_balances(worked_week.id, "2024-03")
    assert result["through"] == "2024-03-15"
    assert result["periods"] == 7
    assert result["written"] == 7

    month = snapshot(service, worked_week, "month", "2024-03")
    assert month.target_hours == 40.0
    assert month.actual_hours == 24.5
    assert month.overtime == -15.5
    assert month.verification_status == "verified"
    assert month.carryover_from_previous_year == 0.0

    week = snapshot(service, worked_week, "week", "2024-W11")
    assert (week.period_start, week.period_end) == (date(2024, 3, 11), date(2024, 3, 17))
    assert week.overtime == -15.5
    assert snapshot(service, worked_week, "day", "2024-03-11").overtime == 1.0
    assert snapshot(service, worked_week, "day", "2024-03-12").overtime == 0.0

    rows = service.ledger.transactions(worked_week.id)
    assert [(tx.date.day, tx.hours) for tx in rows] == [(11, 1.0), (13, -0.5), (14, -8.0), (15, -8.0)]
    assert service.ledger.get_current_balance(worked_week.id) == -15.5
    assert_chain(rows)


def test_ensure_is_idempotent(service, worked_week):
    service.ensure_balances(worked_week.id, "2024-03")
    first_ids = [tx.id for tx in service.ledger.transactions(worked_week.id)]
    again = service.ensure_balances(worked_week.id, "2024-03")
    assert again["written"] == 0
    assert [tx.id for tx in service.ledger.transactions(worked_week.id)] == first_ids


def test_ensure_through_is_clipped_to_today(service, worked_week):
    service.ensure_balances(worked_week.id, date(2024, 12, 31))
    days = service.get_period_balances(worked_week.id, "day")
    assert days[-1].period_key == "2024-03-15"


def test_ensure_through_mid_month_books_the_rest_of_the_period(service, worked_week, assert_chain):
    result = service.ensure_balances(worked_week.id, date(2024, 3, 12))

    assert result["periods"] == 4
    month = snapshot(service, worked_week, "month", "2024-03")
    assert month.overtime == -15.5
    assert month.verification_status == "verified"
    assert snapshot(service, worked_week, "week", "2024-W11").overtime == -15.5
    assert [d.period_key for d in service.get_period_balances(worked_week.id, "day")] == ["2024-03-11", "2024-03-12"]
    assert service.ledger.get_current_balance(worked_week.id) == -15.5
    assert_chain(service.ledger.transactions(worked_week.id))


def test_ensure_applies_schedule_change_to_elapsed_days(service, worked_week, db_session):
    service.ensure_balances(worked_week.id, "2024-03")
    assert service.ledger.get_current_balance(worked_week.id) == -15.5

    worked_week.weekly_hours = 20.0
    db_session.commit()
    service.ensure_balances(worked_week.id, "2024-03")

    # 4h days: +5, +4, +3.5, -4, -4
    assert service.ledger.get_current_balance(worked_week.id) == 4.5
    month = snapshot(service, worked_week, "month", "2024-03")
    assert (month.target_hours, month.overtime) == (20.0, 4.5)
    assert month.verification_status == "verified"


def test_prior_year_edit_reaches_carryover_of_stored_months(service, make_employee, add_entry):
    employee = make_employee(hire_date=date(2023, 12, 1))
    service.ensure_balances(employee.id, "2023-12")
    service.perform_year_end_rollover(2024, actor_id=1)
    service.ensure_balances(employee.id, "2024-02")
    assert snapshot(service, employee, "month", "2024-02").carryover_from_previous_year == -168.0

    add_entry(employee, date(2023, 12, 4), 10.0)
    affected = service.on_time_entry_changed(employee.id, date(2023, 12, 4))

    assert affected == [date(2023, 12, 4), date(2024, 1, 1)]
    assert service.ledger.carryover_for_year(employee.id, 2024).hours == -158.0
    months = {m.period_key: m for m in service.get_period_balances(employee.id, "month")}
    assert months["2023-12"].overtime == -158.0
    assert months["2024-01"].carryover_from_previous_year == -158.0
    assert months["2024-02"].carryover_from_previous_year == -158.0
    assert all(m.verification_status == "verified" for m in months.values())


def test_ensure_before_hire_writes_nothing(service, worked_week):
    result = service.ensure_balances(worked_week.id, "2024-03-01")
    assert result["periods"] == 0
    assert service.get_period_balances(worked_week.id, "month") == []


def test_ensure_rejects_bad_input(service, worked_week):
    with pytest.raises(ValidationError):
        service.ensure_balances(worked_week.id, "2024-3")
    with pytest.raises(NotFoundError):
        service.ensure_balances(999, "2024-03")


def test_month_overtime_matches_ledger_delta(service, make_employee, add_entry, add_absence):
    employee = make_employee(hire_date=date(2024, 1, 15))
    add_entry(employee, date(2024, 1, 15), 10.0)
    add_entry(employee, date(2024, 2, 1), 6.0)
    add_absence(employee, "vacation", date(2024, 2, 5), date(2024, 2, 9))
    add_absence(employee, "unpaid", date(2024, 2, 12), date(2024, 2, 13))
    service.create_correction(employee.id, date(2024, 3, 1), 4.0, "Overtime paid out late", "manual", actor_id=1)

    service.ensure_balances(employee.id, "2024-03")

    months = service.get_period_balances(employee.id, "month")
    assert [m.period_key for m in months] == ["2024-01", "2024-02", "2024-03"]
    assert all(m.verification_status == "verified" for m in months)
    assert sum(m.overtime for m in months) == pytest.approx(service.ledger.get_current_balance(employee.id))

    february = months[1]
    assert february.unpaid_reduction_hours == 16.0
    assert february.absence_credit_hours == 40.0
    days = [d for d in service.get_period_balances(employee.id, "day") if d.period_key.startswith("2024-02")]
    assert sum(d.overtime for d in days) == pytest.approx(february.overtime)


def test_mismatch_is_flagged_then_repaired(service, worked_week, db_session):
    service.ledger.append_transaction(worked_week.id, date(2024, 3, 12), "earned", 2.0, "import", "batch-1")

    with pytest.raises(IntegrityError) as exc_info:
        service.ensure_balances(worked_week.id, "2024-03")
    mismatch = exc_info.value.mismatches[0]
    assert mismatch["period_key"] == "2024-03"
    assert mismatch["snapshot_overtime"] == -15.5
    assert mismatch["ledger_delta"] == -13.5

    # Flagged rows were committed before the error surfaced
    db_session.expire_all()
    assert snapshot(service, worked_week, "month", "2024-03").verification_status == "pending_verification"

    result = service.force_recalculate(worked_week.id, actor_id=7)
    assert result["balance_before"] == -13.5
    assert result["balance_after"] == -15.5
    assert snapshot(service, worked_week, "month", "2024-03").verification_status == "verified"
    assert all(tx.reference_type != "import" for tx in service.ledger.transactions(worked_week.id))

    audit = db_session.query(AuditLog).filter(AuditLog.action == "overtime_recalculated").one()
    assert audit.user_id == 7
    assert audit.after_state == {"balance": -15.5}


def test_force_recalculate_drops_snapshots_outside_employment(service, worked_week, db_session):
    service.ensure_balances(worked_week.id, "2024-03")
    worked_week.termination_date = date(2024, 3, 13)
    db_session.commit()

    service.force_recalculate(worked_week.id)

    assert [d.period_key for d in service.get_period_balances(worked_week.id, "day")] == [
        "2024-03-11", "2024-03-12", "2024-03-13",
    ]
    assert service.ledger.get_current_balance(worked_week.id) == 0.5
    assert db_session.query(PeriodBalance).filter(PeriodBalance.employee_id == worked_week.id).count() == 5


def test_force_recalculate_is_stable(service, worked_week):
    service.ensure_balances(worked_week.id, "2024-03")
    first = service.force_recalculate(worked_week.id)
    second = service.force_recalculate(worked_week.id)
    assert first["balance_after"] == second["balance_after"] == -15.5
    assert second["ledger_dates_changed"] == 0


def test_retroactive_entry_updates_ledger_and_snapshots(service, worked_week, add_entry):
    service.ensure_balances(worked_week.id, "2024-03")
    add_entry(worked_week, date(2024, 3, 14), 8.0)

    affected = service.on_time_entry_changed(worked_week.id, date(2024, 3, 14), actor_id=3)

    assert affected == [date(2024, 3, 14)]
    assert service.ledger.get_current_balance(worked_week.id) == -7.5
    assert snapshot(service, worked_week, "day", "2024-03-14").overtime == 0.0
    month = snapshot(service, worked_week, "month", "2024-03")
    assert month.overtime == -7.5
    assert month.verification_status == "verified"


def test_period_balances_filters(service, worked_week):
    service.ensure_balances(worked_week.id, "2024-03")
    rows = service.get_period_balances(worked_week.id, "day", date(2024, 3, 12), date(2024, 3, 13))
    assert [r.period_key for r in rows] == ["2024-03-12", "2024-03-13"]
    with pytest.raises(ValidationError):
        service.get_period_balances(worked_week.id, "quarter")
