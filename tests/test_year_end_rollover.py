from datetime import date

import pytest

from worktime.core.exceptions import IntegrityError, PartialBatchFailure, ValidationError
from worktime.models.vacation_balance import VacationBalance
from worktime.services.year_end_rollover import prorata_entitlement, validate_year

REASON = "Hours from the December inventory"


@pytest.fixture
def make_zero_target_employee(make_employee):
    """Schedule without any working day, so only corrections move the balance."""
    def _make(**kwargs):
        values = {"hire_date": date(2023, 12, 1), "work_schedule": {"monday": 0}}
        values.update(kwargs)
        return make_employee(**values)
    return _make


def vacation_row(db_session, employee, year):
    return db_session.query(VacationBalance).filter(
        VacationBalance.employee_id == employee.id, VacationBalance.year == year
    ).one()


def test_prorata_entitlement():
    assert prorata_entitlement(date(2023, 5, 1), 30, 2024) == 30
    assert prorata_entitlement(date(2024, 7, 1), 30, 2024) == 15.0
    assert prorata_entitlement(date(2024, 2, 1), 30, 2024) == 27.5
    assert prorata_entitlement(date(2025, 1, 1), 30, 2024) == 0.0


@pytest.mark.parametrize("year", [1999, 2101, "2024"])
def test_year_is_validated(service, year):
    with pytest.raises(ValidationError):
        validate_year(year)
    with pytest.raises(ValidationError):
        service.perform_year_end_rollover(year, actor_id=1)


def test_rollover_posts_carryover_once(service, make_zero_target_employee, db_session, assert_chain):
    employee = make_zero_target_employee()
    service.create_correction(employee.id, date(2023, 12, 15), 37.5, REASON, "manual", 1)

    report = service.perform_year_end_rollover(2024, actor_id=1)

    assert (len(report.successes), len(report.failures), len(report.skipped)) == (1, 0, 0)
    carry = service.ledger.carryover_for_year(employee.id, 2024)
    assert carry.date == date(2024, 1, 1)
    assert (carry.hours, carry.balance_before, carry.balance_after) == (37.5, 0.0, 37.5)
    assert carry.created_by == 1
    assert service.ledger.get_current_balance(employee.id) == 37.5
    assert_chain(service.ledger.transactions(employee.id))

    january = [m for m in service.get_period_balances(employee.id, "month") if m.period_key == "2024-01"][0]
    assert january.carryover_from_previous_year == 37.5
    assert january.verification_status == "verified"

    again = service.perform_year_end_rollover(2024, actor_id=1)
    assert len(again.skipped) == 1
    assert len(service.ledger.transactions(employee.id)) == 2


def test_rollover_carries_negative_and_zero_balances(service, make_zero_target_employee):
    negative = make_zero_target_employee(first_name="Neg")
    zero = make_zero_target_employee(first_name="Zero")
    service.create_correction(negative.id, date(2023, 12, 15), -5.0, REASON, "manual", 1)

    service.perform_year_end_rollover(2024, actor_id=1)

    assert service.ledger.carryover_for_year(negative.id, 2024).hours == -5.0
    assert service.ledger.carryover_for_year(zero.id, 2024).hours == 0.0


def test_vacation_carryover_is_capped(service, make_zero_target_employee, db_session):
    capped = make_zero_target_employee(hire_date=date(2022, 1, 3))
    partial = make_zero_target_employee(hire_date=date(2022, 1, 3))
    db_session.add_all([
        VacationBalance(employee_id=capped.id, year=2023, entitlement=30, carryover=0, taken=22),
        VacationBalance(employee_id=partial.id, year=2023, entitlement=30, carryover=0, taken=27),
    ])
    db_session.commit()

    service.perform_year_end_rollover(2024, actor_id=1)

    assert vacation_row(db_session, capped, 2024).carryover == 5.0
    assert vacation_row(db_session, partial, 2024).carryover == 3.0
    assert vacation_row(db_session, partial, 2024).entitlement == 30


def test_employee_hired_in_target_year(service, make_zero_target_employee, db_session):
    employee = make_zero_target_employee(hire_date=date(2024, 2, 1))

    report = service.perform_year_end_rollover(2024, actor_id=1)

    assert report.successes[0].data["overtime_carryover"] is None
    assert service.ledger.carryover_for_year(employee.id, 2024) is None
    row = vacation_row(db_session, employee, 2024)
    assert (row.entitlement, row.carryover) == (27.5, 0.0)


def test_failing_employee_does_not_stop_batch(service, make_zero_target_employee, monkeypatch):
    first, second, third = [make_zero_target_employee(first_name=name) for name in ("A", "B", "C")]
    original = service.rollover.rollover_employee

    def flaky(employee_id, year, initiated_by):
        if employee_id == second.id:
            raise ValidationError("Schedule missing", field="work_schedule")
        return original(employee_id, year, initiated_by)

    monkeypatch.setattr(service.rollover, "rollover_employee", flaky)
    report = service.perform_year_end_rollover(2024, actor_id=1)

    assert [i.employee_id for i in report.successes] == [first.id, third.id]
    assert report.failures[0].employee_id == second.id
    assert report.failures[0].error_code == "VALIDATION_ERROR"
    assert service.ledger.carryover_for_year(first.id, 2024) is not None
    assert service.ledger.carryover_for_year(second.id, 2024) is None
    with pytest.raises(PartialBatchFailure) as exc_info:
        report.raise_for_failures()
    assert exc_info.value.details["failed"] == 1


def test_failed_snapshot_refresh_keeps_rollover_succeeded(service, make_zero_target_employee, monkeypatch):
    employee = make_zero_target_employee()
    service.create_correction(employee.id, date(2023, 12, 15), 37.5, REASON, "manual", 1)

    def failing_refresh(employee_id, dates, created_by=None):
        raise IntegrityError(employee_id, [{"period_key": "2024-01", "snapshot_overtime": 1.0, "ledger_delta": 0.0}])

    monkeypatch.setattr(service.reconciler, "refresh_for_dates", failing_refresh)
    report = service.perform_year_end_rollover(2024, actor_id=1)

    assert (len(report.successes), len(report.failures)) == (1, 0)
    data = report.successes[0].data
    assert data["overtime_carryover"] == 37.5
    assert data["snapshot_refresh_error"]["error_code"] == "BALANCE_INTEGRITY_MISMATCH"
    assert service.ledger.carryover_for_year(employee.id, 2024).hours == 37.5

    monkeypatch.undo()
    again = service.perform_year_end_rollover(2024, actor_id=1)
    assert len(again.skipped) == 1


def test_cancellation_between_employees(service, make_zero_target_employee):
    first = make_zero_target_employee(first_name="A")
    second = make_zero_target_employee(first_name="B")

    report = service.perform_year_end_rollover(
        2024, actor_id=1,
        should_cancel=lambda: service.ledger.carryover_for_year(first.id, 2024) is not None,
    )

    assert report.cancelled
    assert report.total == 1
    assert service.ledger.carryover_for_year(second.id, 2024) is None


def test_preview_and_history(service, make_zero_target_employee):
    negative = make_zero_target_employee(first_name="Neg")
    newcomer = make_zero_target_employee(first_name="New", hire_date=date(2024, 2, 1))
    service.create_correction(negative.id, date(2023, 12, 15), -5.0, REASON, "manual", 1)

    preview = service.preview_year_end(2024)
    rows = {row["employee_id"]: row for row in preview["employees"]}
    assert preview["total"] == 2
    assert rows[negative.id]["overtime_carryover"] == -5.0
    assert any("Negative" in w for w in rows[negative.id]["warnings"])
    assert any("Hired in 2024" in w for w in rows[newcomer.id]["warnings"])
    assert not rows[negative.id]["already_rolled_over"]
    assert service.ledger.transactions(newcomer.id) == []

    service.perform_year_end_rollover(2024, actor_id=9)

    assert service.preview_year_end(2024)["employees"][0]["already_rolled_over"]
    history = service.year_end_history()
    assert history[0]["year"] == 2024
    assert history[0]["executed_by"] == 9
    assert history[0]["summary"]["succeeded"] == 2
