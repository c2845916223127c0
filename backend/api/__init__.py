# backend/api/__init__.py
"""
集中所有 REST router；WebSocket router 獨立不走 /api
"""
from fastapi import APIRouter

# ── REST routers ─────────────────────────────────────
from .bins        import router as bins_router
from .jtc         import router as jtc_router
from .release     import router as release_router
from .components  import router as components_router

api_router = APIRouter(prefix="/api")

# ---- REST ----
api_router.include_router(bins_router)
api_router.include_router(jtc_router)
api_router.include_router(release_router)
api_router.include_router(components_router)

# ---- WebSocket ----
# ws_router is included directly in main.py without the /api prefix
