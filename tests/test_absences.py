from datetime import date

import pytest

from worktime.core.exceptions import ConflictError, NotFoundError, ValidationError
from worktime.services.absences import AbsenceService


@pytest.fixture
def new_hire(make_employee):
    return make_employee(hire_date=date(2024, 3, 11))


@pytest.fixture
def absences(db_session, clock, service):
    return AbsenceService(db_session, clock, overtime=service)


def ledger_rows(service, employee, tx_type):
    return [(tx.date, tx.hours) for tx in service.ledger.transactions(employee.id) if tx.type == tx_type]


def test_request_counts_working_days(absences, new_hire, add_holiday):
    add_holiday(date(2024, 3, 19), "Betriebsfeiertag")
    absence = absences.request_absence(new_hire.id, "vacation", date(2024, 3, 18), date(2024, 3, 24), reason="Holiday")
    assert absence.status == "pending"
    assert absence.days_required == 4.0


@pytest.mark.parametrize("absence_type, start, end, field", [
    ("sabbatical", date(2024, 3, 18), date(2024, 3, 19), "type"),
    ("vacation", date(2024, 3, 19), date(2024, 3, 18), "end_date"),
    ("vacation", date(2024, 3, 4), date(2024, 3, 12), "start_date"),
])
def test_request_validation(absences, new_hire, absence_type, start, end, field):
    with pytest.raises(ValidationError) as exc_info:
        absences.request_absence(new_hire.id, absence_type, start, end)
    assert exc_info.value.field == field


def test_request_conflicts(absences, new_hire, add_entry):
    absences.request_absence(new_hire.id, "vacation", date(2024, 3, 18), date(2024, 3, 19))
    with pytest.raises(ConflictError):
        absences.request_absence(new_hire.id, "sick", date(2024, 3, 19), date(2024, 3, 20))

    add_entry(new_hire, date(2024, 3, 12), 8.0)
    with pytest.raises(ConflictError) as exc_info:
        absences.request_absence(new_hire.id, "sick", date(2024, 3, 12), date(2024, 3, 13))
    assert exc_info.value.details == {"dates": ["2024-03-12"]}


def test_pending_absence_does_not_touch_ledger(absences, service, new_hire):
    absences.request_absence(new_hire.id, "vacation", date(2024, 3, 13), date(2024, 3, 15))
    assert service.ledger.transactions(new_hire.id) == []


def test_approve_posts_credits(absences, service, new_hire, assert_chain):
    absence = absences.request_absence(new_hire.id, "vacation", date(2024, 3, 13), date(2024, 3, 15))

    approved = absences.approve(absence.id, actor_id=2, note="Enjoy")

    assert approved.status == "approved"
    assert approved.approved_by == 2
    assert approved.admin_note == "Enjoy"
    assert ledger_rows(service, new_hire, "vacation_credit") == [
        (date(2024, 3, 13), 8.0), (date(2024, 3, 14), 8.0), (date(2024, 3, 15), 8.0),
    ]
    # Only Monday and Tuesday are short
    assert service.ledger.get_current_balance(new_hire.id) == -16.0
    month = service.get_period_balances(new_hire.id, "month")[0]
    assert month.absence_credit_hours == 24.0
    assert month.verification_status == "verified"
    assert_chain(service.ledger.transactions(new_hire.id))


def test_status_change_rules(absences, new_hire):
    absence = absences.request_absence(new_hire.id, "sick", date(2024, 3, 13), date(2024, 3, 13))
    with pytest.raises(ValidationError):
        absences.approve(absence.id, actor_id=None)
    absences.approve(absence.id, actor_id=2)
    with pytest.raises(ConflictError):
        absences.approve(absence.id, actor_id=2)
    with pytest.raises(NotFoundError):
        absences.approve(4711, actor_id=2)


def test_reject_after_approval_removes_credits(absences, service, new_hire):
    absence = absences.request_absence(new_hire.id, "sick", date(2024, 3, 13), date(2024, 3, 14))
    absences.approve(absence.id, actor_id=2)

    absences.reject(absence.id, actor_id=2, note="Certificate missing")

    assert ledger_rows(service, new_hire, "sick_credit") == []
    assert service.ledger.get_current_balance(new_hire.id) == -40.0


def test_delete_removes_credits(absences, service, new_hire):
    absence = absences.request_absence(new_hire.id, "special", date(2024, 3, 15), date(2024, 3, 15))
    absences.approve(absence.id, actor_id=2)
    assert ledger_rows(service, new_hire, "special_credit") == [(date(2024, 3, 15), 8.0)]

    absences.delete_absence(absence.id, actor_id=2)

    assert ledger_rows(service, new_hire, "special_credit") == []
    with pytest.raises(NotFoundError):
        absences.get_absence(absence.id)


def test_unpaid_leave_reduces_target(absences, service, new_hire):
    absence = absences.request_absence(new_hire.id, "unpaid", date(2024, 3, 14), date(2024, 3, 15))
    absences.approve(absence.id, actor_id=2)

    assert ledger_rows(service, new_hire, "unpaid_adjustment") == [(date(2024, 3, 14), 8.0), (date(2024, 3, 15), 8.0)]
    month = service.get_period_balances(new_hire.id, "month")[0]
    assert month.raw_target_hours == 40.0
    assert month.target_hours == 24.0
    assert month.overtime == -24.0
    assert service.ledger.get_current_balance(new_hire.id) == -24.0


def test_future_days_are_booked_once_they_pass(absences, service, new_hire, clock):
    absence = absences.request_absence(new_hire.id, "vacation", date(2024, 3, 18), date(2024, 3, 22))
    absences.approve(absence.id, actor_id=2)
    assert ledger_rows(service, new_hire, "vacation_credit") == []

    clock.set_date(date(2024, 3, 20))
    service.ensure_balances(new_hire.id, "2024-03")

    assert [d for d, _ in ledger_rows(service, new_hire, "vacation_credit")] == [
        date(2024, 3, 18), date(2024, 3, 19), date(2024, 3, 20),
    ]
