from sqlalchemy import Column, Integer, Float, ForeignKey, DateTime, UniqueConstraint
from worktime.database import Base


class VacationBalance(Base):
    __tablename__ = "vacation_balances"
    __table_args__ = (
        UniqueConstraint("employee_id", "year", name="uq_vacation_balance_employee_year"),
    )

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    year = Column(Integer, nullable=False)
    entitlement = Column(Float, default=0.0, nullable=False)
    carryover = Column(Float, default=0.0, nullable=False)
    taken = Column(Float, default=0.0, nullable=False)
    created_at = Column(DateTime, nullable=True)

    @property
    def remaining(self) -> float:
        return (self.entitlement or 0.0) + (self.carryover or 0.0) - (self.taken or 0.0)
