from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from starlette.concurrency import run_in_threadpool

from carrierflow.api.auth import require_api_key
from carrierflow.api.normalize import normalize_hook_payload
from carrierflow.api.schemas import (
    CompleteRequest,
    DeleteRequest,
    InitiateRequest,
    ResumeRequest,
    TrialRequest,
    VerifyRequest,
)
from carrierflow.core.operators import capabilities_of, sandbox_credentials
from carrierflow.engine import Engine, get_engine

router = APIRouter()


def _capability_view(operator: str, environment: str) -> dict:
    cap = capabilities_of(operator)
    out = asdict(cap)
    out["variant"] = cap.variant.value
    out["identifier_format"] = cap.identifier_format.value
    out["is_asynchronous"] = cap.is_asynchronous
    out["environments"] = sorted(cap.environments)
    if environment == "sandbox":
        creds = sandbox_credentials(cap.operator_id)
        if creds:
            out["sandbox"] = creds
    return out


# ---------------------------------------------------------------------------
# flows
# ---------------------------------------------------------------------------
@router.post("/flows/{operator}/initiate", dependencies=[Depends(require_api_key)])
async def initiate_flow(operator: str, req: InitiateRequest, engine: Engine = Depends(get_engine)):
    out = await run_in_threadpool(engine.manager.initiate, operator, req.operation, req.context())
    return out.to_dict()


@router.post("/flows/{operator}/verify", dependencies=[Depends(require_api_key)])
async def verify_code(operator: str, req: VerifyRequest, engine: Engine = Depends(get_engine)):
    out = await run_in_threadpool(engine.manager.verify_and_complete, operator, req.msisdn, req.pin, req.context())
    return out.to_dict()


@router.post("/flows/{operator}/complete", dependencies=[Depends(require_api_key)])
async def complete_checkout(operator: str, req: CompleteRequest, engine: Engine = Depends(get_engine)):
    out = await run_in_threadpool(engine.manager.complete_with_token, operator, req.token, req.sessionId,
                                  req.context())
    return out.to_dict()


@router.get("/flows/{operator}/references/{key}", dependencies=[Depends(require_api_key)])
def get_flow_reference(operator: str, key: str, engine: Engine = Depends(get_engine)):
    """Polling view for flows completed out of band (webhook / async notification)."""
    ref = engine.manager.get_flow_reference(operator, key)
    return {"operator": operator, "key": key, "found": ref is not None, "reference": ref}


# ---------------------------------------------------------------------------
# operators
# ---------------------------------------------------------------------------
@router.get("/operators/{operator}", dependencies=[Depends(require_api_key)])
def get_operator(operator: str, engine: Engine = Depends(get_engine)):
    return _capability_view(operator, engine.gateway.environment)


@router.get("/operators/{operator}/recommended-flow", dependencies=[Depends(require_api_key)])
def get_recommended_flow(operator: str, engine: Engine = Depends(get_engine)):
    return engine.manager.get_recommended_flow(operator)


# ---------------------------------------------------------------------------
# subscriptions
# ---------------------------------------------------------------------------
@router.delete("/subscriptions/{operator}/{uuid}", dependencies=[Depends(require_api_key)])
async def delete_subscription(operator: str, uuid: str, req: DeleteRequest = Body(None),
                              engine: Engine = Depends(get_engine)):
    msisdn = req.msisdn if req else None
    out = await run_in_threadpool(engine.subscriptions.delete, operator, uuid, msisdn)
    return out.to_dict()


@router.get("/subscriptions/{operator}/{uuid}", dependencies=[Depends(require_api_key)])
async def subscription_status(operator: str, uuid: str, engine: Engine = Depends(get_engine)):
    out = await run_in_threadpool(engine.subscriptions.status, operator, uuid)
    return out.to_dict()


@router.post("/subscriptions/{operator}/{uuid}/resume", dependencies=[Depends(require_api_key)])
async def resume_subscription(operator: str, uuid: str, req: ResumeRequest, engine: Engine = Depends(get_engine)):
    out = await run_in_threadpool(engine.subscriptions.resume, operator, uuid, req.removedAt, req.msisdn)
    return out.to_dict()


@router.post("/subscriptions/{operator}/{uuid}/trial", dependencies=[Depends(require_api_key)])
async def apply_trial(operator: str, uuid: str, req: TrialRequest, engine: Engine = Depends(get_engine)):
    out = await run_in_threadpool(engine.subscriptions.apply_trial, operator, uuid, req.trialDays)
    return out.to_dict()


# ---------------------------------------------------------------------------
# webhooks
# ---------------------------------------------------------------------------
async def _read_hook(request: Request, payload: Any) -> dict:
    if payload is None:
        raw = await request.body()
        payload = raw or None
    return normalize_hook_payload(payload)


@router.post("/hooks/alacrity")
async def hook_any(request: Request, payload: Any = Body(None), engine: Engine = Depends(get_engine)):
    body = await _read_hook(request, payload)
    out = await run_in_threadpool(engine.reconciler.reconcile_any, body)
    return {"success": True, "result": out.to_dict()}


@router.post("/hooks/{operator}")
async def hook_operator(operator: str, request: Request, payload: Any = Body(None),
                        engine: Engine = Depends(get_engine)):
    body = await _read_hook(request, payload)
    out = await run_in_threadpool(engine.reconciler.reconcile, operator, body)
    return {"success": True, "result": out.to_dict()}
