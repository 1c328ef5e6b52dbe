"""
recipients.py
-------------
Purpose:
    Operator endpoints for recipients: registration, schedule settings,
    pause/resume/removal, acknowledgments, snoozes, leaves, status,
    history and manual test reminders.

    Every route requires the admin API key (`X-API-Key`).
"""

from fastapi import APIRouter, Depends, HTTPException, status

from reminder_dispatcher.auth.verify import auth_dependency
from reminder_dispatcher.infrastructure.observability.logging import get_logger
from reminder_dispatcher.middleware.rate_limit_dependencies import rate_limit_sender
from reminder_dispatcher.models.api.recipient_request import (
    AcknowledgmentRequest,
    LeaveRequest,
    RecipientScheduleUpdateRequest,
    RecipientUpsertRequest,
    SnoozeRequest,
)
from reminder_dispatcher.models.api.recipient_response import (
    AcknowledgmentResponse,
    HistoryResponse,
    LeaveResponse,
    RecipientResponse,
)
from reminder_dispatcher.models.domain.recipient_domain import CheckpointType
from reminder_dispatcher.repositories.recipient_repository import RecipientRepositoryError
from reminder_dispatcher.routes.dependencies import get_runtime
from reminder_dispatcher.runtime import ReminderRuntime
from reminder_dispatcher.services.attendance_service import RecipientNotFoundError

router = APIRouter(prefix="/recipients", tags=["recipients"], dependencies=[Depends(auth_dependency)])
logger = get_logger(__name__)

HISTORY_LIMIT = 14


def _not_found(address: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Recipient {address} not found")


@router.get("")
async def list_recipients(runtime: ReminderRuntime = Depends(get_runtime)):
    recipients = await runtime.repository.get_all_recipients()
    return {"recipients": recipients, "count": len(recipients)}


@router.post("", response_model=RecipientResponse, status_code=status.HTTP_201_CREATED)
async def upsert_recipient(
    body: RecipientUpsertRequest, runtime: ReminderRuntime = Depends(get_runtime)
):
    recipient = await runtime.repository.upsert_recipient(body.address, body.name, body.role)
    return RecipientResponse(recipient=recipient)


@router.patch("/{address}", response_model=RecipientResponse)
async def update_schedule(
    address: str,
    body: RecipientScheduleUpdateRequest,
    runtime: ReminderRuntime = Depends(get_runtime),
):
    recipient = await runtime.repository.get_recipient(address)
    if recipient is None:
        raise _not_found(address)

    checkpoint_times = None
    if body.morning_time or body.evening_time:
        checkpoint_times = dict(recipient.checkpoint_times)
        if body.morning_time:
            checkpoint_times[CheckpointType.MORNING.value] = body.morning_time
        if body.evening_time:
            checkpoint_times[CheckpointType.EVENING.value] = body.evening_time

    schedule_overrides = None
    if body.reset_overrides or body.overrides:
        schedule_overrides = {} if body.reset_overrides else dict(recipient.schedule_overrides)
        for override in body.overrides:
            day_key = str(override.day)
            existing = schedule_overrides.get(day_key)
            day_entry = dict(existing) if isinstance(existing, dict) else {}
            if override.time is None:
                day_entry.pop(override.checkpoint.value, None)
            else:
                day_entry[override.checkpoint.value] = override.time
            if day_entry:
                schedule_overrides[day_key] = day_entry
            else:
                schedule_overrides.pop(day_key, None)

    try:
        updated = await runtime.repository.update_schedule(
            address,
            checkpoint_times=checkpoint_times,
            schedule_overrides=schedule_overrides,
            work_days=body.work_days,
            max_followups=body.max_followups,
        )
    except RecipientRepositoryError as e:
        if e.recoverable:
            raise
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    if updated is None:
        raise _not_found(address)
    return RecipientResponse(recipient=updated)


@router.delete("/{address}")
async def remove_recipient(address: str, runtime: ReminderRuntime = Depends(get_runtime)):
    if not await runtime.attendance.remove(address):
        raise _not_found(address)
    return {"address": address, "removed": True}


@router.post("/{address}/pause")
async def pause_recipient(address: str, runtime: ReminderRuntime = Depends(get_runtime)):
    if not await runtime.attendance.pause(address):
        raise _not_found(address)
    return {"address": address, "is_active": False}


@router.post("/{address}/resume")
async def resume_recipient(address: str, runtime: ReminderRuntime = Depends(get_runtime)):
    if not await runtime.attendance.resume(address):
        raise _not_found(address)
    return {"address": address, "is_active": True}


@router.post(
    "/{address}/acknowledgments",
    response_model=AcknowledgmentResponse,
    dependencies=[Depends(rate_limit_sender)],
)
async def acknowledge(
    address: str,
    body: AcknowledgmentRequest,
    runtime: ReminderRuntime = Depends(get_runtime),
):
    try:
        record, created = await runtime.attendance.acknowledge(address, body.checkpoint, body.method)
    except RecipientNotFoundError as e:
        raise _not_found(address) from e
    return AcknowledgmentResponse(acknowledgment=record, created=created)


@router.post("/{address}/snooze")
async def snooze(
    address: str, body: SnoozeRequest, runtime: ReminderRuntime = Depends(get_runtime)
):
    try:
        count = await runtime.attendance.snooze(address, body.checkpoint)
    except RecipientNotFoundError as e:
        raise _not_found(address) from e
    return {"address": address, "snooze_count": count}


@router.get("/{address}/leaves")
async def list_leaves(address: str, runtime: ReminderRuntime = Depends(get_runtime)):
    leaves = await runtime.repository.list_leaves(address, runtime.clock.now().date)
    return {"address": address, "leaves": leaves}


@router.post("/{address}/leaves", response_model=LeaveResponse, status_code=status.HTTP_201_CREATED)
async def register_leave(
    address: str, body: LeaveRequest, runtime: ReminderRuntime = Depends(get_runtime)
):
    try:
        leave = await runtime.attendance.register_leave(
            address, body.start_date, body.end_date, body.reason
        )
    except RecipientNotFoundError as e:
        raise _not_found(address) from e
    return LeaveResponse(leave=leave)


@router.delete("/{address}/leaves/{leave_id}")
async def cancel_leave(
    address: str, leave_id: int, runtime: ReminderRuntime = Depends(get_runtime)
):
    if not await runtime.attendance.cancel_leave(address, leave_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Active leave not found")
    return {"id": leave_id, "status": "cancelled"}


@router.get("/{address}/status")
async def recipient_status(address: str, runtime: ReminderRuntime = Depends(get_runtime)):
    try:
        return await runtime.attendance.status(address)
    except RecipientNotFoundError as e:
        raise _not_found(address) from e


@router.get("/{address}/history", response_model=HistoryResponse)
async def history(address: str, runtime: ReminderRuntime = Depends(get_runtime)):
    records = await runtime.repository.get_acknowledgment_history(address, HISTORY_LIMIT)
    return HistoryResponse(address=address, acknowledgments=records)


@router.post("/{address}/test/{checkpoint}")
async def trigger_test(
    address: str, checkpoint: CheckpointType, runtime: ReminderRuntime = Depends(get_runtime)
):
    try:
        started = await runtime.attendance.trigger_test(address, checkpoint)
    except RecipientNotFoundError as e:
        raise _not_found(address) from e

    logger.info("Test reminder triggered", address=address, checkpoint=checkpoint.value, started=started)
    return {"address": address, "checkpoint": checkpoint.value, "started": started}
