from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medibook.routes.deps import database_unavailable, ensure_database_ready, get_db
from medibook.scheduling.errors import DoctorNotFound
from medibook.scheduling.slots import Slot
from medibook.services.availability_service import display_timezone, get_availability
from medibook.services.google_calendar_service import get_calendar_service

router = APIRouter(tags=['availability'])

NOT_AVAILABLE_MESSAGE = 'Doctor not available on this day'


class WorkingHoursResponse(BaseModel):
    start: str
    end: str


class SlotResponse(BaseModel):
    time: str
    start_time: str
    end_time: str
    start_iso: str
    end_iso: str


class AvailabilityResponse(BaseModel):
    success: bool = True
    date: date
    doctor_id: str
    doctor_name: str
    specialty: str | None = None
    consultation_fee: float | None = None
    working_hours: WorkingHoursResponse | None = None
    available_slots: list[SlotResponse]
    total_slots: int
    message: str | None = None


def to_slot_response(slot: Slot) -> SlotResponse:
    local = slot.interval.astimezone(display_timezone())
    return SlotResponse(
        time=slot.label,
        start_time=local.start.strftime('%H:%M'),
        end_time=local.end.strftime('%H:%M'),
        start_iso=local.start.isoformat(),
        end_iso=local.end.isoformat(),
    )


@router.get('/doctors/{doctor_id}/availability', response_model=AvailabilityResponse)
def get_doctor_availability(
    doctor_id: str,
    on_date: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
    calendar=Depends(get_calendar_service),
):
    ensure_database_ready()

    try:
        result = get_availability(db, doctor_id, on_date, calendar=calendar)
    except DoctorNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Doctor not found.') from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    window = result.working_window
    return AvailabilityResponse(
        date=on_date,
        doctor_id=result.doctor.doctor_id,
        doctor_name=result.doctor.name,
        specialty=result.doctor.specialty,
        consultation_fee=result.doctor.consultation_fee,
        working_hours=(
            WorkingHoursResponse(start=window.start.strftime('%H:%M'), end=window.end.strftime('%H:%M'))
            if window
            else None
        ),
        available_slots=[to_slot_response(slot) for slot in result.available_slots],
        total_slots=result.total_slots,
        message=None if window else NOT_AVAILABLE_MESSAGE,
    )
