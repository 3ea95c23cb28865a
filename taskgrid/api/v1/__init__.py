from fastapi import APIRouter
from taskgrid.api.v1.boards import router as boards_router
from taskgrid.api.v1.properties import router as properties_router
from taskgrid.api.v1.views import router as views_router
from taskgrid.api.v1.tasks import router as tasks_router
from taskgrid.api.v1.board_permissions import router as board_permissions_router
from taskgrid.api.v1.invitations import router as invitations_router, board_invitations_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(boards_router)
api_router.include_router(properties_router)
api_router.include_router(views_router)
api_router.include_router(tasks_router)
api_router.include_router(board_permissions_router)
api_router.include_router(board_invitations_router)
api_router.include_router(invitations_router)
