from datetime import date

from fastapi import APIRouter, Depends, Query

from clinicbook.booking.slots import get_available_slots
from clinicbook.schemas import CamelModel, UtcDatetime
from clinicbook.store import StoreGateway, get_store

router = APIRouter(tags=['slots'])


class TimeSlotResponse(CamelModel):
    start_time: UtcDatetime
    end_time: UtcDatetime
    is_available: bool = True


@router.get('', response_model=list[TimeSlotResponse])
def list_available_slots(
    provider_id: str | None = Query(default=None, alias='providerId'),
    slot_date: date | None = Query(default=None, alias='date'),
    duration: int | None = Query(default=None),
    store: StoreGateway = Depends(get_store),
):
    slots = get_available_slots(store, provider_id, slot_date, duration)
    return [TimeSlotResponse.model_validate(slot) for slot in slots]
