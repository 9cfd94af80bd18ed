"""
FastAPI application for the XIP relayer.

Exposes the settlement pipeline, the proof pass-through and the recipient
privacy store. Start with: xip relayer start
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from xip.core.errors import (
    ExternalServiceFailure,
    InvalidParameters,
    NotAuthorized,
    NotFound,
    NotSolved,
    StateConflict,
    VerificationTimeout,
    XIPError,
)
from xip.core.storage.storage_manager import RecipientStore
from xip.relayer.schemas import (
    SettleRequestBody,
    SettleWithProofRequestBody,
    StoreRecipientsRequest,
    SubmitProofRequest,
    VerifyRequest,
)
from xip.relayer.service import SettlementService
from xip.utils.logger import get_logger

logger = get_logger("relayer.http")

router = APIRouter()


def status_for(error: XIPError) -> int:
    """HTTP status for an error, by kind."""
    if isinstance(error, (InvalidParameters, NotSolved)):
        return 400
    if isinstance(error, NotAuthorized):
        return 403
    if isinstance(error, NotFound):
        return 404
    if isinstance(error, StateConflict):
        return 409
    if isinstance(error, ExternalServiceFailure):
        return 502
    if isinstance(error, VerificationTimeout):
        return 504
    return 500


def error_body(error: XIPError) -> dict:
    return {
        "success": False,
        "error": error.kind,
        "code": error.name,
        "message": error.message,
        **error.details,
    }


def _service(request: Request) -> SettlementService:
    return request.app.state.service


def _store(request: Request) -> RecipientStore:
    store = request.app.state.store
    if store is None:
        raise ExternalServiceFailure("Recipient store not configured")
    return store


# ============ Health ============

@router.get("/health")
async def health(request: Request):
    return _service(request).health()


# ============ Verification / Settlement ============

@router.post("/verify")
async def verify(req: VerifyRequest, request: Request):
    result = await _service(request).verify(req.chain2_intent_id, req.chain_id)
    return result.to_dict()


@router.post("/settle")
async def settle(req: SettleRequestBody, request: Request):
    receipt = await _service(request).settle(req.to_request())
    return receipt.to_dict()


@router.post("/settle-with-proof")
async def settle_with_proof(req: SettleWithProofRequestBody, request: Request):
    receipt = await _service(request).settle_with_proof(req.to_request(), req.proof_data)
    return receipt.to_dict()


# ============ Proofs ============

@router.post("/submit-proof")
async def submit_proof(req: SubmitProofRequest, request: Request):
    job_id = await _service(request).submit_proof(req.proof_data)
    return {"success": True, "jobId": job_id, "status": "Submitted"}


@router.get("/proof-status/{job_id}")
async def proof_status(job_id: str, request: Request):
    status = await _service(request).proof_status(job_id)
    return {"success": True, **status.to_dict()}


# ============ Recipient privacy store ============

@router.post("/store-recipients", status_code=201)
async def store_recipients(req: StoreRecipientsRequest, request: Request):
    manifest = _store(request).put(req.intent_id, req.recipients, req.amounts, req.chain_id)
    return {"success": True, "message": "Recipients stored", **manifest.to_dict()}


@router.get("/get-recipients/{intent_id}")
async def get_recipients(intent_id: str, request: Request):
    manifest = _store(request).get(intent_id)
    if manifest is None:
        raise NotFound("No recipients stored for intent", intentId=intent_id)
    return {"success": True, **manifest.to_dict()}


@router.get("/list-stored-intents")
async def list_stored_intents(request: Request):
    intents = _store(request).list()
    return {"success": True, "count": len(intents), "intents": intents}


@router.delete("/delete-recipients/{intent_id}")
async def delete_recipients(intent_id: str, request: Request):
    if not _store(request).delete(intent_id):
        raise NotFound("No recipients stored for intent", intentId=intent_id)
    return {"success": True, "message": "Recipients deleted", "intentId": intent_id}


# ============ Factory ============

def create_app(service: SettlementService, store: Optional[RecipientStore] = None) -> FastAPI:
    """Build the relayer app around an already-wired service and store."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Relayer API started for chains {sorted(service.clients)}")
        yield
        close = getattr(service.verifier, "close", None)
        if close is not None:
            await close()
        if store is not None:
            store.close()
        logger.info("Relayer API shutdown")

    app = FastAPI(title="XIP Relayer", lifespan=lifespan)
    app.state.service = service
    app.state.store = store

    @app.exception_handler(XIPError)
    async def handle_xip_error(request: Request, exc: XIPError):
        status = status_for(exc)
        if status >= 500:
            logger.error(f"{request.url.path}: {exc.name}: {exc.message}")
        else:
            logger.warning(f"{request.url.path}: {exc.name}: {exc.message}")
        return JSONResponse(status_code=status, content=error_body(exc))

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        messages = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'][1:])}: {err['msg']}" for err in exc.errors()
        )
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": InvalidParameters.kind, "message": messages},
        )

    app.include_router(router)
    return app
