import json
from datetime import date

import httpx
import pytest

from marcai.service.errors import NotFoundError
from marcai.service.schedules import ScheduleService

SCHEDULES_BODY = {
    "disponibilidade": [
        {
            "_id": "s1",
            "dayOfWeek": 1,
            "label": "Segunda",
            "isActive": True,
            "startTime": "09:00",
            "endTime": "18:00",
            "breakStartTime": "12:00",
            "breakEndTime": "13:00",
        },
        {"_id": "s0", "dayOfWeek": 0, "label": "Domingo", "isActive": False},
    ],
    "agendamentos": [
        {"_id": "a1", "dataHora": "2026-10-19T14:00:00.000Z", "cliente": {"_id": "c1", "nome": "Ana"}}
    ],
}


async def test_get_schedules_parses_overview(make_client, logged_in_store, backend):
    backend.route("GET", "/schedules", httpx.Response(200, json=SCHEDULES_BODY))

    async with make_client() as client:
        overview = await ScheduleService(client).get_schedules()

    monday = overview.disponibilidade[0]
    assert monday.day_of_week == 1
    assert (monday.start_time, monday.break_end_time) == ("09:00", "13:00")
    assert overview.disponibilidade[1].is_active is False
    assert overview.agendamentos[0].cliente.nome == "Ana"


async def test_update_schedule_sends_only_given_fields(make_client, logged_in_store, backend):
    sent = {}

    def capture(request):
        sent.update(json.loads(request.content))
        return httpx.Response(200, json={"dayOfWeek": 2, "startTime": "10:00", "isActive": True})

    backend.route("PUT", "/schedules/2", capture)

    async with make_client() as client:
        updated = await ScheduleService(client).update_schedule(2, start_time="10:00", is_active=True)

    assert sent == {"startTime": "10:00", "isActive": True}
    assert updated.start_time == "10:00"


async def test_update_schedule_rejects_bad_input(make_client, backend):
    async with make_client() as client:
        service = ScheduleService(client)
        with pytest.raises(ValueError):
            await service.update_schedule(7, label="x")
        with pytest.raises(ValueError):
            await service.update_schedule(1, colour="blue")

    assert backend.calls == []


async def test_available_slots_query(make_client, logged_in_store, backend):
    seen = {}

    def capture(request):
        seen.update(dict(request.url.params))
        return httpx.Response(200, json={"success": True, "data": ["09:00", "09:30", "14:00"]})

    backend.route("GET", "/schedules/available-slots", capture)

    async with make_client() as client:
        slots = await ScheduleService(client).get_available_slots(date(2026, 10, 20), duration_minutes=30)

    assert seen == {"date": "2026-10-20", "duration": "30"}
    assert slots.date == "2026-10-20"
    assert slots.slots == ["09:00", "09:30", "14:00"]


async def test_errors_propagate(make_client, logged_in_store, backend):
    backend.route("GET", "/schedules", httpx.Response(404, json={"error": "Agenda não encontrada"}))

    async with make_client() as client:
        with pytest.raises(NotFoundError):
            await ScheduleService(client).get_schedules()


def test_schedule_rejects_malformed_time():
    from pydantic import ValidationError

    from marcai.api.schemas import Schedule

    with pytest.raises(ValidationError):
        Schedule.model_validate({"dayOfWeek": 1, "startTime": "25:00"})
