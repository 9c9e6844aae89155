from datetime import date

from worktime.services.target_hours import effective_window


def test_raw_target_clipped_to_hire_date_and_today(service, make_employee):
    employee = make_employee(hire_date=date(2024, 3, 11))
    # March 11-15 are the only employed days up to today (Friday March 15)
    assert service.targets.raw_target(employee, date(2024, 3, 1), date(2024, 3, 31)) == 40.0


def test_raw_target_clipped_to_termination(service, make_employee):
    employee = make_employee(hire_date=date(2024, 3, 4), termination_date=date(2024, 3, 6))
    assert service.targets.raw_target(employee, date(2024, 3, 1), date(2024, 3, 31)) == 24.0


def test_effective_window_empty_when_nothing_left(make_employee):
    employee = make_employee(hire_date=date(2024, 3, 11))
    assert effective_window(employee, date(2024, 3, 1), date(2024, 3, 8), date(2024, 3, 15)) is None
    assert effective_window(employee, date(2024, 3, 20), date(2024, 3, 31), date(2024, 3, 15)) is None
    assert effective_window(employee, date(2024, 3, 1), date(2024, 3, 31), date(2024, 3, 15)) == (
        date(2024, 3, 11), date(2024, 3, 15)
    )


def test_unpaid_leave_reduces_adjusted_target(service, make_employee, add_absence):
    employee = make_employee(hire_date=date(2024, 3, 11))
    add_absence(employee, "unpaid", date(2024, 3, 14), date(2024, 3, 15))
    start, end = date(2024, 3, 11), date(2024, 3, 15)
    assert service.targets.raw_target(employee, start, end) == 40.0
    assert service.targets.unpaid_reduction(employee, start, end) == 16.0
    assert service.targets.adjusted_target(employee, start, end) == 24.0


def test_unpaid_leave_over_weekend_reduces_only_working_days(service, make_employee, add_absence):
    employee = make_employee(hire_date=date(2024, 3, 4))
    add_absence(employee, "unpaid", date(2024, 3, 8), date(2024, 3, 11))  # Fri-Mon
    assert service.targets.unpaid_reduction(employee, date(2024, 3, 4), date(2024, 3, 15)) == 16.0


def test_unpaid_reduction_respects_range(service, make_employee, add_absence):
    employee = make_employee(hire_date=date(2024, 3, 4))
    add_absence(employee, "unpaid", date(2024, 3, 7), date(2024, 3, 12))
    # Only Mon 11 and Tue 12 lie inside the second week
    assert service.targets.unpaid_reduction(employee, date(2024, 3, 11), date(2024, 3, 17)) == 16.0


def test_pending_and_rejected_unpaid_leave_is_ignored(service, make_employee, add_absence):
    employee = make_employee(hire_date=date(2024, 3, 4))
    add_absence(employee, "unpaid", date(2024, 3, 4), date(2024, 3, 5), status="pending")
    add_absence(employee, "unpaid", date(2024, 3, 6), date(2024, 3, 6), status="rejected")
    assert service.targets.unpaid_reduction(employee, date(2024, 3, 4), date(2024, 3, 8)) == 0.0


def test_unpaid_leave_on_holiday_reduces_nothing(service, make_employee, add_absence, add_holiday):
    employee = make_employee(hire_date=date(2024, 3, 4))
    add_holiday(date(2024, 3, 13), "Testfeiertag")
    add_absence(employee, "unpaid", date(2024, 3, 13), date(2024, 3, 13))
    assert service.targets.unpaid_reduction(employee, date(2024, 3, 11), date(2024, 3, 15)) == 0.0
    assert service.targets.raw_target(employee, date(2024, 3, 11), date(2024, 3, 15)) == 32.0
