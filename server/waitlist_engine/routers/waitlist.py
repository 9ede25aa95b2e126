"""Waitlist router for enrollment, lifecycle and listing operations."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from ..core.dependencies import (
    Actor,
    get_current_user,
    get_waitlist_service,
    require_admin,
    require_staff,
    verify_sweep_caller,
)
from ..core.exceptions import ForbiddenError, ProblemDetailsException
from ..models.waitlist import ActorRole
from ..schemas.common import Problem
from ..schemas.waitlist import (
    CancelRequest,
    EnrollRequest,
    EntryRequest,
    SearchWaitlistRequest,
    SlotFreedRequest,
    SlotFreedResponse,
    SweepResponse,
    WaitlistEntry,
    WaitlistListResponse,
)
from ..services.waitlist_service import WaitlistService, ensure_can_act

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/waitlist", tags=["waitlist"])

PROBLEM_RESPONSES = {
    400: {"model": Problem},
    401: {"model": Problem},
    403: {"model": Problem},
    404: {"model": Problem},
    409: {"model": Problem},
}


def _convert_entry_to_schema(entry_model) -> WaitlistEntry:
    """Convert waitlist entry model to schema."""
    return WaitlistEntry(
        id=str(entry_model.id),
        client_id=entry_model.client_id,
        service_id=entry_model.service_id,
        employee_id=entry_model.employee_id,
        requested_date_time=entry_model.requested_date_time,
        duration_minutes=entry_model.duration_minutes,
        selected_addon_ids=list(entry_model.selected_addon_ids or []),
        total_price=entry_model.total_price,
        position=entry_model.position,
        status=entry_model.status,
        created_at=entry_model.created_at,
        expires_at=entry_model.expires_at,
        notification_sent_at=entry_model.notification_sent_at,
        notification_expires_at=entry_model.notification_expires_at,
        converted_appointment_ref=entry_model.converted_appointment_ref,
        converted_at=entry_model.converted_at,
    )


def _unexpected(operation: str, e: Exception, **fields) -> HTTPException:
    logger.error(
        f"Unexpected error in waitlist {operation}",
        extra={**fields, "error": str(e)},
        exc_info=True
    )
    return HTTPException(status_code=500, detail="Internal server error")


@router.post("/enroll", response_model=WaitlistEntry, status_code=201, responses=PROBLEM_RESPONSES)
async def enroll(
    request: EnrollRequest,
    actor: Actor = Depends(get_current_user),
    service: WaitlistService = Depends(get_waitlist_service),
) -> JSONResponse:
    """
    Join the waitlist of a fully booked slot.

    Clients enroll themselves; staff may enroll a client on their behalf.
    """
    client_id = request.client_id or actor.user_id
    if actor.role == ActorRole.CLIENT and client_id != actor.user_id:
        raise ForbiddenError(detail="Clients may only join the waitlist for themselves")

    try:
        entry = await service.enroll(
            client_id=client_id,
            service_id=request.service_id,
            employee_id=request.employee_id,
            requested_date_time=request.requested_date_time,
            duration=request.duration_minutes,
            addon_ids=request.selected_addon_ids,
            total_price=request.total_price,
        )
        return JSONResponse(
            status_code=201,
            content=_convert_entry_to_schema(entry).model_dump(mode="json")
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _unexpected("enroll", e, client_id=client_id, service_id=request.service_id)


@router.post("/cancel", response_model=WaitlistEntry, responses=PROBLEM_RESPONSES)
async def cancel(
    request: CancelRequest,
    actor: Actor = Depends(get_current_user),
    service: WaitlistService = Depends(get_waitlist_service),
) -> JSONResponse:
    """Leave the waitlist. Cancelling an open offer passes it to the next customer."""
    try:
        entry = await service.cancel(request.entry_id, actor.user_id, actor.role)

        if request.reason:
            logger.info(
                "Waitlist cancellation reason",
                extra={"entry_id": request.entry_id, "reason": request.reason}
            )

        return JSONResponse(
            status_code=200,
            content=_convert_entry_to_schema(entry).model_dump(mode="json")
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _unexpected("cancel", e, entry_id=request.entry_id)


@router.post("/confirm", response_model=WaitlistEntry, responses={**PROBLEM_RESPONSES, 502: {"model": Problem}})
async def confirm(
    request: EntryRequest,
    actor: Actor = Depends(get_current_user),
    service: WaitlistService = Depends(get_waitlist_service),
) -> JSONResponse:
    """
    Claim the freed slot offered to this entry.

    Fails with 409 once the confirmation window has closed or the offer has
    moved on.
    """
    try:
        entry = await service.get_entry_or_raise(request.entry_id)
        ensure_can_act(entry, actor.user_id, actor.role)

        entry = await service.confirm(entry.id)
        return JSONResponse(
            status_code=200,
            content=_convert_entry_to_schema(entry).model_dump(mode="json")
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _unexpected("confirm", e, entry_id=request.entry_id)


@router.post("/get", response_model=WaitlistEntry, responses=PROBLEM_RESPONSES)
async def get_entry(
    request: EntryRequest,
    actor: Actor = Depends(get_current_user),
    service: WaitlistService = Depends(get_waitlist_service),
) -> JSONResponse:
    """Fetch a single waitlist entry."""
    try:
        entry = await service.get_entry_or_raise(request.entry_id)
        ensure_can_act(entry, actor.user_id, actor.role)
        return JSONResponse(
            status_code=200,
            content=_convert_entry_to_schema(entry).model_dump(mode="json")
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _unexpected("get", e, entry_id=request.entry_id)


@router.post("/mine", response_model=WaitlistListResponse, responses=PROBLEM_RESPONSES)
async def my_entries(
    actor: Actor = Depends(get_current_user),
    service: WaitlistService = Depends(get_waitlist_service),
) -> JSONResponse:
    """The caller's waiting and notified entries."""
    try:
        entries = await service.list_client_entries(actor.user_id)
        response_data = WaitlistListResponse(
            items=[_convert_entry_to_schema(entry) for entry in entries]
        )
        return JSONResponse(
            status_code=200,
            content=response_data.model_dump(mode="json")
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _unexpected("listing", e, client_id=actor.user_id)


@router.post("/search", response_model=WaitlistListResponse, responses=PROBLEM_RESPONSES)
async def search(
    request: SearchWaitlistRequest,
    actor: Actor = Depends(require_admin),
    service: WaitlistService = Depends(get_waitlist_service),
) -> JSONResponse:
    """
    Search waitlist entries by service, employee and status.

    Uses cursor-based pagination.
    """
    try:
        result = await service.search_entries(request)
        response_data = WaitlistListResponse(
            items=[_convert_entry_to_schema(entry) for entry in result.items],
            next_cursor=result.next_cursor,
        )
        return JSONResponse(
            status_code=200,
            content=response_data.model_dump(mode="json")
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _unexpected("search", e, admin_id=actor.user_id)


@router.post("/slot-freed", response_model=SlotFreedResponse, responses=PROBLEM_RESPONSES)
async def slot_freed(
    request: SlotFreedRequest,
    actor: Actor = Depends(require_staff),
    service: WaitlistService = Depends(get_waitlist_service),
) -> JSONResponse:
    """
    Offer a freed slot to the next customer on its waitlist.

    Also serves as the manual "notify next" action. Does nothing while an
    offer for the slot is still open.
    """
    try:
        outcome = await service.on_slot_freed(
            request.service_id,
            request.employee_id,
            request.requested_date_time,
        )
        response_data = SlotFreedResponse(
            promoted=_convert_entry_to_schema(outcome.promoted) if outcome.promoted else None,
            expired_count=len(outcome.expired),
        )
        return JSONResponse(
            status_code=200,
            content=response_data.model_dump(mode="json")
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _unexpected("slot-freed", e, service_id=request.service_id, acting_user_id=actor.user_id)


@router.post("/sweep", response_model=SweepResponse, responses=PROBLEM_RESPONSES)
async def sweep(
    caller: str = Depends(verify_sweep_caller),
    service: WaitlistService = Depends(get_waitlist_service),
) -> JSONResponse:
    """Expire lapsed entries and cascade offers. Safe to call repeatedly."""
    try:
        result = await service.sweep()
        logger.info(
            "Sweep triggered over HTTP",
            extra={"caller": caller, "processed_count": result.processed_count}
        )
        response_data = SweepResponse(
            processed_count=result.processed_count,
            promoted_count=result.promoted_count,
            failed_count=result.failed_count,
        )
        return JSONResponse(
            status_code=200,
            content=response_data.model_dump(mode="json")
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _unexpected("sweep", e, caller=caller)
