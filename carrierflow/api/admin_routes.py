from typing import Optional

from fastapi import APIRouter, Depends, Query
from starlette.concurrency import run_in_threadpool

from carrierflow.api.auth import require_admin
from carrierflow.engine import Engine, get_engine

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/webhooks/status")
def webhooks_status(_=Depends(require_admin), engine: Engine = Depends(get_engine)):
    """Reconciliation counters and history occupancy."""
    return engine.reconciler.status()


@router.get("/webhooks/history")
def webhooks_history(
    operator: Optional[str] = None,
    limit: Optional[int] = Query(default=None, gt=0),
    _=Depends(require_admin),
    engine: Engine = Depends(get_engine),
):
    """Most recent reconciliation outcomes, oldest first."""
    items = engine.reconciler.history(operator=operator, limit=limit)
    return {"count": len(items), "items": items}


@router.post("/sweep")
async def sweep(_=Depends(require_admin), engine: Engine = Depends(get_engine)):
    """Drops expired codes, sessions, references and fingerprints now instead of waiting for the sweeper."""
    counts = await run_in_threadpool(engine.sweeper.run_once)
    return {"swept": counts}
