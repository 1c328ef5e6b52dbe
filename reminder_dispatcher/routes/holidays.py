from datetime import date

from fastapi import APIRouter, Depends, HTTPException, status

from reminder_dispatcher.auth.verify import auth_dependency
from reminder_dispatcher.models.api.recipient_request import BroadcastRequest, HolidayRequest
from reminder_dispatcher.models.api.recipient_response import BroadcastResponse, HolidayListResponse
from reminder_dispatcher.routes.dependencies import get_runtime
from reminder_dispatcher.runtime import ReminderRuntime

router = APIRouter(tags=["calendar"], dependencies=[Depends(auth_dependency)])


@router.get("/holidays", response_model=HolidayListResponse)
async def upcoming_holidays(runtime: ReminderRuntime = Depends(get_runtime)):
    holidays = await runtime.repository.get_upcoming_holidays(runtime.clock.now().date)
    return HolidayListResponse(holidays=holidays)


@router.post("/holidays", status_code=status.HTTP_201_CREATED)
async def add_holiday(body: HolidayRequest, runtime: ReminderRuntime = Depends(get_runtime)):
    added = await runtime.repository.add_holiday(body.holiday_date, body.name, created_by="admin")
    if not added:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"{body.holiday_date.isoformat()} is already a holiday",
        )
    return {"holiday_date": body.holiday_date, "name": body.name}


@router.delete("/holidays/{holiday_date}")
async def remove_holiday(holiday_date: date, runtime: ReminderRuntime = Depends(get_runtime)):
    if not await runtime.repository.remove_holiday(holiday_date):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No local holiday on that date (national holidays cannot be removed)",
        )
    return {"holiday_date": holiday_date, "removed": True}


@router.post("/broadcast", response_model=BroadcastResponse)
async def broadcast(body: BroadcastRequest, runtime: ReminderRuntime = Depends(get_runtime)):
    result = await runtime.attendance.broadcast(body.text)
    return BroadcastResponse(**result)
