"""V1 API router aggregation."""

from fastapi import APIRouter

from calltracker.api.v1.auth import router as auth_router
from calltracker.api.v1.call_logs import router as call_logs_router
from calltracker.api.v1.contacts import router as contacts_router
from calltracker.api.v1.invitations import public_router as public_invitations_router
from calltracker.api.v1.invitations import router as invitations_router
from calltracker.api.v1.organizations import router as organizations_router
from calltracker.api.v1.teams import router as teams_router
from calltracker.api.v1.users import router as users_router

v1_router = APIRouter(prefix="/v1")
v1_router.include_router(organizations_router)
v1_router.include_router(invitations_router)
v1_router.include_router(public_invitations_router)
v1_router.include_router(auth_router)
v1_router.include_router(users_router)
v1_router.include_router(teams_router)
v1_router.include_router(contacts_router)
v1_router.include_router(call_logs_router)
