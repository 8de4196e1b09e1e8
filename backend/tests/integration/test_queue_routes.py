"""
Integration tests for the queue API.

The app's queue service is replaced with one wired to the manual timer
backend, so notification timers can be fired from the test.
"""
import pytest
from httpx import AsyncClient, ASGITransport

from waitline.api.app import app
from waitline.api.dependencies import get_queue_service


MERCHANT_ID = "m-1"


@pytest.fixture
def api(queue_service):
    app.dependency_overrides[get_queue_service] = lambda: queue_service
    yield app
    app.dependency_overrides.clear()


def client_for(application):
    return AsyncClient(transport=ASGITransport(app=application), base_url="http://test")


async def create_queue(client, **overrides):
    payload = {"merchant_id": MERCHANT_ID, "name": "Main", "average_service_time": 15}
    payload.update(overrides)
    response = await client.post("/queues", json=payload)
    assert response.status_code == 201
    return response.json()


async def join(client, queue_id, customer_id, **overrides):
    payload = {
        "customer_id": customer_id,
        "customer_name": f"Guest {customer_id}",
        "customer_phone": "+15550001",
        "party_size": 2,
    }
    payload.update(overrides)
    return await client.post(f"/queues/{queue_id}/entries", json=payload)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_create_and_list_queues(api):
    async with client_for(api) as client:
        queue = await create_queue(client)
        await create_queue(client, merchant_id="m-2")

        assert queue["name"] == "Main"
        assert queue["accepting_customers"] is True
        assert queue["entries"] == []

        response = await client.get("/queues", params={"merchant_id": MERCHANT_ID})
        assert response.status_code == 200
        assert [q["id"] for q in response.json()] == [queue["id"]]

        response = await client.get(f"/queues/{queue['id']}")
        assert response.json()["id"] == queue["id"]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_unknown_queue_returns_404(api):
    async with client_for(api) as client:
        response = await client.get("/queues/missing")

    assert response.status_code == 404
    data = response.json()
    assert data["error"] == "Queue with id 'missing' not found"
    assert "correlation_id" in data


@pytest.mark.integration
@pytest.mark.asyncio
async def test_join_assigns_positions_and_estimates(api):
    async with client_for(api) as client:
        queue = await create_queue(client)
        first = await join(client, queue["id"], "c-1")
        second = await join(client, queue["id"], "c-2", platform="whatsapp", session_id="wa-2")

    assert first.status_code == 201
    assert first.json()["position"] == 1
    assert first.json()["estimated_wait_time"] == 0
    assert first.json()["status"] == "waiting"
    assert second.json()["position"] == 2
    assert second.json()["estimated_wait_time"] == 15
    assert second.json()["platform"] == "whatsapp"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_join_validation_error(api):
    async with client_for(api) as client:
        queue = await create_queue(client)
        response = await join(client, queue["id"], "c-1", party_size=0)

    assert response.status_code == 422
    assert response.json()["error"] == "Validation error"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_capacity_exceeded_returns_409(api):
    async with client_for(api) as client:
        queue = await create_queue(client, max_capacity=1)
        await join(client, queue["id"], "c-1")
        response = await join(client, queue["id"], "c-2")

    assert response.status_code == 409
    assert response.json()["details"]["max_capacity"] == 1


@pytest.mark.integration
@pytest.mark.asyncio
async def test_closed_queue_returns_409(api):
    async with client_for(api) as client:
        queue = await create_queue(client)
        response = await client.post(f"/queues/{queue['id']}/accepting", json={"accepting": False})
        assert response.json() == {"accepting_customers": False}

        response = await join(client, queue["id"], "c-1")
        assert response.status_code == 409
        assert response.json()["error"] == "Queue is not accepting customers"

        response = await client.post(f"/queues/{queue['id']}/accepting", json={})
        assert response.json() == {"accepting_customers": True}


@pytest.mark.integration
@pytest.mark.asyncio
async def test_call_next_verify_and_claim(api, provider):
    async with client_for(api) as client:
        queue = await create_queue(client)
        await join(client, queue["id"], "c-1")
        await join(client, queue["id"], "c-2")

        response = await client.post(f"/queues/{queue['id']}/call-next")
        assert response.status_code == 200
        data = response.json()
        assert data["called"] is True
        entry = data["entry"]
        assert entry["customer_id"] == "c-1"
        assert entry["status"] == "called"
        code = entry["verification_code"]
        assert len(code) == 4

        [message] = provider.of_type("customer_called")
        assert code in message["message"]

        response = await client.post(f"/queues/{queue['id']}/verify", json={"code": code.lower()})
        assert response.status_code == 200
        assert response.json()["id"] == entry["id"]

        response = await client.post(f"/queues/{queue['id']}/claim", json={"code": code})
        assert response.status_code == 200
        assert response.json()["status"] == "completed"

        response = await client.post(f"/queues/{queue['id']}/verify", json={"code": code})
        assert response.status_code == 404

        response = await client.get(f"/queues/{queue['id']}/stats")
        assert response.json()["served_today"] == 1
        assert response.json()["waiting_count"] == 1


@pytest.mark.integration
@pytest.mark.asyncio
async def test_call_next_on_empty_queue(api):
    async with client_for(api) as client:
        queue = await create_queue(client)
        response = await client.post(f"/queues/{queue['id']}/call-next")

    assert response.status_code == 200
    assert response.json() == {"called": False, "entry": None}


@pytest.mark.integration
@pytest.mark.asyncio
async def test_call_specific_and_serve(api, timers):
    async with client_for(api) as client:
        queue = await create_queue(client)
        await join(client, queue["id"], "c-1")
        second = (await join(client, queue["id"], "c-2")).json()

        response = await client.post(f"/queues/{queue['id']}/entries/{second['id']}/call")
        assert response.status_code == 200
        assert response.json()["status"] == "called"
        assert timers.pending_count() == 2

        response = await client.post(f"/queues/{queue['id']}/entries/{second['id']}/call")
        assert response.status_code == 404
        assert response.json()["details"]["expected_status"] == "waiting"

        response = await client.post(f"/queues/{queue['id']}/entries/{second['id']}/serve")
        assert response.json()["status"] == "serving"
        assert timers.pending_count() == 0


@pytest.mark.integration
@pytest.mark.asyncio
async def test_complete_with_invalid_status(api):
    async with client_for(api) as client:
        queue = await create_queue(client)
        await join(client, queue["id"], "c-1")
        entry = (await client.post(f"/queues/{queue['id']}/call-next")).json()["entry"]

        response = await client.post(
            f"/queues/{queue['id']}/entries/{entry['id']}/complete",
            json={"resulting_status": "waiting"},
        )
        assert response.status_code == 400

        response = await client.post(
            f"/queues/{queue['id']}/entries/{entry['id']}/complete",
            json={"resulting_status": "cancelled"},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_cancel_and_requeue(api, provider, timers):
    async with client_for(api) as client:
        queue = await create_queue(client)
        first = (await join(client, queue["id"], "c-1")).json()
        second = (await join(client, queue["id"], "c-2")).json()

        response = await client.post(f"/queues/{queue['id']}/entries/{first['id']}/requeue")
        assert response.status_code == 404

        await client.post(f"/queues/{queue['id']}/call-next")
        await client.post(f"/queues/{queue['id']}/entries/{first['id']}/complete")
        await timers.advance(minutes=1)

        response = await client.post(f"/queues/{queue['id']}/entries/{first['id']}/requeue")
        assert response.status_code == 200
        assert response.json()["status"] == "waiting"
        assert response.json()["position"] == 2
        assert len(provider.of_type("requeued")) == 1

        response = await client.post(f"/queues/{queue['id']}/entries/{second['id']}/cancel")
        assert response.json()["status"] == "cancelled"

        queue_data = (await client.get(f"/queues/{queue['id']}")).json()
        waiting = [e for e in queue_data["entries"] if e["status"] == "waiting"]
        assert [(e["customer_id"], e["position"]) for e in waiting] == [("c-1", 1)]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_unclaimed_table_is_released(api, provider, timers):
    async with client_for(api) as client:
        queue = await create_queue(client)
        await join(client, queue["id"], "c-1")
        await client.post(f"/queues/{queue['id']}/call-next")

        await timers.advance(minutes=15)

        queue_data = (await client.get(f"/queues/{queue['id']}")).json()
        assert queue_data["entries"][0]["status"] == "no-show"
        assert queue_data["no_show_count"] == 1

        stats = (await client.get(f"/queues/{queue['id']}/stats")).json()
        assert stats["no_shows_today"] == 1

    assert len(provider.of_type("no_show_final")) == 1
