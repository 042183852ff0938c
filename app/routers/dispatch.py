"""Dispatch API router."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError as PydanticValidationError

from ..core.auth import get_owner_id
from ..dispatch import schemas
from ..dispatch.errors import DependencyError, NotFoundError, ValidationError
from ..dispatch.runtime import DispatchRuntime, get_runtime
from ..limits import dispatch_rate_limit, limiter

router = APIRouter(prefix="/api", tags=["dispatch"])

logger = logging.getLogger(__name__)


@contextmanager
def _service_context() -> Iterator[DispatchRuntime]:
    runtime = get_runtime()
    try:
        yield runtime
    except (ValidationError, PydanticValidationError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except DependencyError as exc:
        logger.warning("Dispatch dependency unavailable: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Dispatch storage is unavailable; retry later",
        ) from exc


@router.post("/dispatch", response_model=schemas.DispatchResult)
@limiter.limit(dispatch_rate_limit)
def dispatch(
    request: Request,
    payload: schemas.DispatchPayload,
    owner_id: str = Depends(get_owner_id),
) -> schemas.DispatchResult:
    """Classify an inbound message and assign the conversation to an agent."""

    with _service_context() as runtime:
        return runtime.runner.run(
            schemas.DispatchRequest(owner_id=owner_id, **payload.model_dump())
        )


@router.post("/dispatch/classify", response_model=schemas.IntentClassification)
def classify(
    payload: schemas.ClassifyPayload,
    owner_id: str = Depends(get_owner_id),
) -> schemas.IntentClassification:
    """Preview the intent classification for a message without assigning."""

    with _service_context() as runtime:
        return runtime.service.classify(owner_id, payload.content, payload.history)


@router.get(
    "/conversations/{conversation_id}/assignment",
    response_model=schemas.Assignment,
)
def get_assignment(
    conversation_id: str,
    owner_id: str = Depends(get_owner_id),
) -> schemas.Assignment:
    with _service_context() as runtime:
        return runtime.service.get_assignment(conversation_id, owner_id)


@router.get(
    "/conversations/{conversation_id}/assignments",
    response_model=schemas.AssignmentList,
)
def list_assignments(
    conversation_id: str,
    owner_id: str = Depends(get_owner_id),
) -> schemas.AssignmentList:
    with _service_context() as runtime:
        items = runtime.service.list_assignments(conversation_id, owner_id)
    return schemas.AssignmentList(items=items, total=len(items))


@router.post(
    "/conversations/{conversation_id}/reassign",
    response_model=schemas.Assignment,
)
def reassign(
    conversation_id: str,
    payload: schemas.ReassignPayload,
    owner_id: str = Depends(get_owner_id),
) -> schemas.Assignment:
    """Move a conversation to another agent, superseding the active assignment."""

    with _service_context() as runtime:
        return runtime.service.reassign(
            conversation_id, owner_id, payload.agent_id, payload.reason
        )


@router.get("/queue/status", response_model=schemas.QueueStatus)
def queue_status(owner_id: str = Depends(get_owner_id)) -> schemas.QueueStatus:
    with _service_context() as runtime:
        return runtime.service.queue_status(owner_id)
