from __future__ import annotations

from datetime import date as date_type
from typing import Any, Optional, Union

from marcai.api.client import ApiClient
from marcai.api.schemas import AvailableSlots, Schedule, ScheduleOverview
from marcai.logging import get_logger
from marcai.service.errors import ApiError

logger = get_logger(__name__)

# Wire names accepted by PUT /schedules/{dayOfWeek}
_UPDATABLE_FIELDS = {
    "label": "label",
    "is_active": "isActive",
    "start_time": "startTime",
    "end_time": "endTime",
    "break_start_time": "breakStartTime",
    "break_end_time": "breakEndTime",
}


def _unwrap(payload: Any) -> Any:
    if isinstance(payload, dict) and "success" in payload and "data" in payload:
        return payload["data"]
    return payload


class ScheduleService:
    """Working hours, breaks and booked slots of the current tenant."""

    def __init__(self, client: ApiClient) -> None:
        self.client = client

    async def get_schedules(self) -> ScheduleOverview:
        try:
            payload = await self.client.get("/schedules")
        except ApiError as exc:
            logger.error("schedules_fetch_failed", error_code=exc.error_code)
            raise
        return ScheduleOverview.model_validate(_unwrap(payload) or {})

    async def update_schedule(self, day_of_week: int, **fields: Any) -> Schedule:
        if not 0 <= day_of_week <= 6:
            raise ValueError("day_of_week must be between 0 (Sunday) and 6 (Saturday)")
        unknown = set(fields) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"unknown schedule fields: {', '.join(sorted(unknown))}")
        body = {_UPDATABLE_FIELDS[name]: value for name, value in fields.items()}
        try:
            payload = await self.client.put(f"/schedules/{day_of_week}", json=body)
        except ApiError as exc:
            logger.error("schedule_update_failed", day_of_week=day_of_week, error_code=exc.error_code)
            raise
        return Schedule.model_validate(_unwrap(payload))

    async def get_available_slots(
        self, day: Union[date_type, str], duration_minutes: Optional[int] = None
    ) -> AvailableSlots:
        day_str = day.isoformat() if isinstance(day, date_type) else day
        params: dict[str, Any] = {"date": day_str}
        if duration_minutes is not None:
            if duration_minutes <= 0:
                raise ValueError("duration_minutes must be positive")
            params["duration"] = duration_minutes
        try:
            payload = await self.client.get("/schedules/available-slots", params=params)
        except ApiError as exc:
            logger.error("available_slots_fetch_failed", date=day_str, error_code=exc.error_code)
            raise
        data = _unwrap(payload)
        if isinstance(data, list):
            data = {"date": day_str, "slots": data}
        return AvailableSlots.model_validate(data)
