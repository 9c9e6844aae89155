import math
from datetime import date

import pytest

from worktime.core.exceptions import ConflictError, NotFoundError, ValidationError
from worktime.models.audit_log import AuditLog
from worktime.models.correction import Correction


@pytest.fixture
def new_hire(make_employee):
    return make_employee(hire_date=date(2024, 3, 11))


@pytest.mark.parametrize("kwargs, field", [
    ({"actor_id": None}, "created_by"),
    ({"reason": "too short"}, "reason"),
    ({"reason": "          padded   "}, "reason"),
    ({"hours": 0}, "hours"),
    ({"hours": 0.001}, "hours"),
    ({"hours": math.nan}, "hours"),
    ({"correction_type": "bonus"}, "correction_type"),
    ({"day": date(2024, 3, 16)}, "date"),
    ({"day": date(2024, 3, 8)}, "date"),
])
def test_create_validation(service, new_hire, kwargs, field):
    values = {
        "day": date(2024, 3, 12),
        "hours": 2.0,
        "reason": "Overtime from trade fair",
        "correction_type": "manual",
        "actor_id": 1,
    }
    values.update(kwargs)
    with pytest.raises(ValidationError) as exc_info:
        service.create_correction(new_hire.id, **values)
    assert exc_info.value.field == field
    assert service.list_corrections(employee_id=new_hire.id, include_deleted=True) == []


def test_create_for_unknown_employee(service):
    with pytest.raises(NotFoundError):
        service.create_correction(999, date(2024, 3, 12), 2.0, "Overtime from trade fair", "manual", 1)


def test_create_posts_to_ledger_and_audits(service, new_hire, db_session):
    correction = service.create_correction(
        new_hire.id, date(2024, 3, 12), 3.0, "  Overtime from trade fair ", "manual", 1, approved_by=2
    )

    assert correction.reason == "Overtime from trade fair"
    assert correction.approved_by == 2
    tx = service.ledger.find(new_hire.id, date(2024, 3, 12), "correction", "correction", correction.id)
    assert tx.hours == 3.0
    assert tx.created_by == 1
    # The covering week has no entries: five missed 8h days plus the correction
    assert service.ledger.get_current_balance(new_hire.id) == -37.0

    audit = db_session.query(AuditLog).filter(AuditLog.action == "correction_created").one()
    assert audit.entity_id == str(correction.id)
    assert audit.after_state["hours"] == 3.0
    assert audit.after_state["date"] == "2024-03-12"


def test_delete_is_soft_and_reverses_ledger(service, new_hire, db_session, assert_chain):
    correction = service.create_correction(new_hire.id, date(2024, 3, 12), 3.0, "Overtime from trade fair", "manual", 1)

    deleted = service.delete_correction(correction.id, actor_id=4)

    assert deleted.is_deleted
    assert deleted.deleted_by == 4
    assert db_session.get(Correction, correction.id) is not None
    assert service.ledger.find(new_hire.id, date(2024, 3, 12), "correction", "correction", correction.id) is None
    assert service.ledger.get_current_balance(new_hire.id) == -40.0
    assert_chain(service.ledger.transactions(new_hire.id))

    assert service.list_corrections(employee_id=new_hire.id) == []
    assert [c.id for c in service.list_corrections(employee_id=new_hire.id, include_deleted=True)] == [correction.id]

    audit = db_session.query(AuditLog).filter(AuditLog.action == "correction_deleted").one()
    assert audit.user_id == 4
    assert audit.before_state["deleted_at"] is None
    assert audit.after_state["deleted_at"] is not None


def test_delete_errors(service, new_hire):
    correction = service.create_correction(new_hire.id, date(2024, 3, 12), 3.0, "Overtime from trade fair", "manual", 1)
    with pytest.raises(ValidationError):
        service.delete_correction(correction.id, actor_id=None)
    service.delete_correction(correction.id, actor_id=1)
    with pytest.raises(ConflictError):
        service.delete_correction(correction.id, actor_id=1)
    with pytest.raises(NotFoundError):
        service.delete_correction(12345, actor_id=1)


def test_list_filters(service, make_employee):
    employee = make_employee(hire_date=date(2023, 11, 1))
    reason = "Adjustment after payroll review"
    dec = service.create_correction(employee.id, date(2023, 12, 20), 1.0, reason, "manual", 1)
    jan = service.create_correction(employee.id, date(2024, 1, 10), -2.0, reason, "system_error", 1)
    mar = service.create_correction(employee.id, date(2024, 3, 1), 4.0, reason, "migration", 1)

    assert [c.id for c in service.list_corrections(employee_id=employee.id)] == [mar.id, jan.id, dec.id]
    assert [c.id for c in service.list_corrections(employee_id=employee.id, year=2023)] == [dec.id]
    assert [c.id for c in service.list_corrections(employee_id=employee.id, year=2024, month=1)] == [jan.id]
    assert service.list_corrections(employee_id=employee.id, year=2024, month=2) == []
    with pytest.raises(ValidationError):
        service.list_corrections(employee_id=employee.id, year=2024, month=13)
