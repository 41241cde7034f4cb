# app/routers/batches.py
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response, status

from app.errors import NotFoundError, ProviderError, StoreError, ValidationError
from app.schemas.batch import (
    Batch,
    BatchCreatePayload,
    BatchCreated,
    StartCallPayload,
    StartCallResponse,
)
from app.services.orchestrator_service import BatchOrchestrator, get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/batches", tags=["batches"])


@router.get("", response_model=List[Batch])
def list_batches(orchestrator: BatchOrchestrator = Depends(get_orchestrator)):
    try:
        return orchestrator.list_batches()
    except StoreError as e:
        logger.error("Error listing batches", extra={"error": str(e)})
        raise HTTPException(status_code=500, detail="Failed to list batches")


@router.get("/{batch_id}", response_model=Batch)
def get_batch(batch_id: str, orchestrator: BatchOrchestrator = Depends(get_orchestrator)):
    try:
        return orchestrator.get_batch(batch_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="batch not found")
    except StoreError as e:
        logger.error("Error reading batch", extra={"batch_id": batch_id, "error": str(e)})
        raise HTTPException(status_code=500, detail="Failed to read batch")


@router.post("", response_model=BatchCreated, status_code=status.HTTP_201_CREATED)
def create_batch(
    payload: BatchCreatePayload,
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
):
    """
    Create a batch and start calling every lead that has a phone number.

    - leads without a phone are kept as `rejected`
    - 400 if no lead can be dialled
    """
    try:
        return orchestrator.create_batch(payload.leads, name=payload.name)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StoreError as e:
        logger.error("Error creating batch", extra={"error": str(e)})
        raise HTTPException(status_code=500, detail="Failed to create batch")


@router.post("/{batch_id}/check-status", response_model=Batch)
def check_batch_status(
    batch_id: str,
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
):
    """Manual reconciliation of a batch against the call provider."""
    try:
        return orchestrator.reconcile(batch_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="batch not found")
    except StoreError as e:
        logger.error("Error checking batch status", extra={"batch_id": batch_id, "error": str(e)})
        raise HTTPException(status_code=500, detail="Failed to check batch status")


@router.post("/{batch_id}/start-call", response_model=StartCallResponse)
def start_call(
    batch_id: str,
    payload: StartCallPayload,
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
):
    try:
        call_id = orchestrator.start_single_call(batch_id, payload.lead_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (ProviderError, StoreError) as e:
        raise HTTPException(status_code=500, detail=f"Failed to start call: {e}")

    return StartCallResponse(call_id=call_id)


@router.delete("/{batch_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def delete_batch(batch_id: str, orchestrator: BatchOrchestrator = Depends(get_orchestrator)):
    try:
        orchestrator.delete_batch(batch_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="batch not found")
    except StoreError as e:
        logger.error("Error deleting batch", extra={"batch_id": batch_id, "error": str(e)})
        raise HTTPException(status_code=500, detail="Failed to delete batch")

    return Response(status_code=status.HTTP_204_NO_CONTENT)
