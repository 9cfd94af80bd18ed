"""
FastAPI control surface for a running solver engine.

GET /health, GET /status, GET /active-intents, POST /start, POST /stop
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, FastAPI, Request

from xip.solver.engine import SolverEngine

router = APIRouter()


def _engine(request: Request) -> SolverEngine:
    return request.app.state.engine


@router.get("/health")
async def health(request: Request):
    engine = _engine(request)
    return {
        "status": "healthy" if engine.running else "stopped",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "chains": sorted(engine.clients),
    }


@router.get("/status")
async def status(request: Request):
    return _engine(request).status()


@router.get("/active-intents")
async def active_intents(request: Request):
    intents = [s.to_dict() for s in _engine(request).active_intents.values()]
    return {"count": len(intents), "intents": intents}


@router.post("/start")
async def start(request: Request):
    engine = _engine(request)
    await engine.start()
    return {"success": True, "running": engine.running}


@router.post("/stop")
async def stop(request: Request):
    engine = _engine(request)
    await engine.stop()
    return {"success": True, "running": engine.running}


def create_solver_app(engine: SolverEngine) -> FastAPI:
    app = FastAPI(title="XIP Solver")
    app.state.engine = engine
    app.include_router(router)
    return app
