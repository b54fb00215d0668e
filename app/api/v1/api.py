"""
V1 API router aggregator — wires all endpoint modules together.
"""

from fastapi import APIRouter

from app.api.v1.endpoints import attendance, auth, employees, health

api_router = APIRouter()

# Auth (login, refresh, logout, profile)
api_router.include_router(auth.router)

# Employee directory
api_router.include_router(employees.router)

# Punch clock, live stream
api_router.include_router(attendance.router)

# Health, status
api_router.include_router(health.router)
