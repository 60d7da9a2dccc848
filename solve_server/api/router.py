from fastapi import APIRouter

from solve_server.api.solve.routes import router as solve_router

router = APIRouter()
router.include_router(solve_router)
