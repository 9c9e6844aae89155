from sqlalchemy import Column, Integer, String, Date, UniqueConstraint
from worktime.database import Base
import enum


class HolidayScope(str, enum.Enum):
    FEDERAL = "federal"    # applies to every employee
    REGIONAL = "regional"  # applies to employees of the matching region only


class Holiday(Base):
    __tablename__ = "holidays"
    __table_args__ = (
        UniqueConstraint("date", "scope", "region", name="uq_holiday_date_scope_region"),
    )

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, nullable=False, index=True)
    name = Column(String, nullable=False)
    scope = Column(String, nullable=False, default=HolidayScope.FEDERAL.value)
    region = Column(String, nullable=True)
