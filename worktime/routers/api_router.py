from fastapi import APIRouter
from worktime.routers import overtime, corrections, year_end, time_entries, absences

# Centralized API router hub
# Routers are aggregated here, and main.py only imports this single hub.
api_router = APIRouter()

api_router.include_router(overtime.router, tags=["Overtime"])
api_router.include_router(corrections.router, tags=["Corrections"])
api_router.include_router(year_end.router, tags=["Year End"])
api_router.include_router(time_entries.router, tags=["Time Entries"])
api_router.include_router(absences.router, tags=["Absences"])
