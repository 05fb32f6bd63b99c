import pytest

from app.domain.courier import GeoPosition
from app.domain.webhook import EventType

from fixtures_seed import new_courier, new_subscription


def delivery_body(n, **kw):
    body = {
        "order_number": f"PED-{n:04d}",
        "customer_name": f"Cliente {n}",
        "address": {"street": "Rua A, 1", "city": "Campinas", "zip": "13000-000"},
    }
    body.update(kw)
    return body


async def _create(client, n, **kw):
    r = await client.post("/v1/deliveries", json=delivery_body(n, **kw))
    assert r.status_code == 201, r.text
    return r.json()


@pytest.mark.asyncio
async def test_delivery_flow_over_http(client, courier, subscriptions, services, sink):
    subscriptions.add(new_subscription("https://erp.test/h", EventType.ENTREGA_EM_ROTA))
    d1 = await _create(client, 1)
    d2 = await _create(client, 2)
    assert d1["status"] == "pending" and d1["version"] == 0

    for d in (d1, d2):
        r = await client.post(f"/v1/deliveries/{d['id']}/assign", json={"courier_id": courier.id})
        assert r.status_code == 200, r.text

    r = await client.get(f"/v1/couriers/{courier.id}/route")
    assert [s["id"] for s in r.json()["stops"]] == [d1["id"], d2["id"]]

    r = await client.put(f"/v1/couriers/{courier.id}/route", json={"delivery_ids": [d2["id"], d1["id"]]})
    assert r.status_code == 200, r.text
    assert r.json()["succeeded"] == [d2["id"], d1["id"]]

    r = await client.post(f"/v1/couriers/{courier.id}/route/{d1['id']}/up")
    assert r.json()["order"] == [d1["id"], d2["id"]]

    r = await client.post(f"/v1/deliveries/{d1['id']}/transition", json={"status": "in_transit"})
    assert r.status_code == 200, r.text
    assert r.json()["previous_status"] == "assigned"
    assert r.json()["event"] == "ENTREGA_EM_ROTA"
    assert r.json()["route"] is None

    r = await client.post(f"/v1/deliveries/{d1['id']}/transition", json={"status": "delivered"})
    assert r.json()["delivery"]["route_position"] is None
    assert r.json()["route"] == {"courier_id": courier.id, "order": [d2["id"]], "succeeded": [d2["id"]], "failed": {}}

    r = await client.get(f"/v1/couriers/{courier.id}/next", params={"after": d1["id"]})
    assert r.json()["next"]["id"] == d2["id"]

    await services.dispatcher.drain()
    assert len(sink.to("https://erp.test/h")) == 1


@pytest.mark.asyncio
async def test_error_mapping(client, courier):
    r = await client.get("/v1/deliveries/dlv_missing")
    assert r.status_code == 404
    assert r.json()["code"] == "NOT_FOUND"

    d = await _create(client, 1, payment={"method": "pix", "amount": 30})
    r = await client.post(f"/v1/deliveries/{d['id']}/transition", json={"status": "delivered"})
    assert r.status_code == 409
    assert r.json()["code"] == "INVALID_TRANSITION"

    await client.post(f"/v1/deliveries/{d['id']}/assign", json={"courier_id": courier.id})
    await client.post(f"/v1/deliveries/{d['id']}/transition", json={"status": "in_transit"})
    r = await client.post(f"/v1/deliveries/{d['id']}/transition", json={"status": "delivered"})
    assert r.status_code == 422
    assert r.json()["code"] == "MISSING_EVIDENCE"

    r = await client.put(f"/v1/deliveries/{d['id']}/evidence", json={"signature": "blob://s"})
    assert r.status_code == 200
    r = await client.post(f"/v1/deliveries/{d['id']}/payment/received")
    assert r.json()["payment"]["received"] is True
    r = await client.post(f"/v1/deliveries/{d['id']}/transition", json={"status": "delivered"})
    assert r.status_code == 200

    r = await client.post(f"/v1/deliveries/{d['id']}/unassign")
    assert r.status_code == 409


@pytest.mark.asyncio
async def test_reorder_with_wrong_set_is_422(client, courier):
    d = await _create(client, 1)
    await client.post(f"/v1/deliveries/{d['id']}/assign", json={"courier_id": courier.id})

    r = await client.put(f"/v1/couriers/{courier.id}/route", json={"delivery_ids": [d["id"], "dlv_x"]})
    assert r.status_code == 422
    assert r.json()["code"] == "INVALID_RECORD"


@pytest.mark.asyncio
async def test_optimize_route(client, couriers):
    c = await couriers.create(new_courier("Rita", position=GeoPosition(latitude=0.0, longitude=0.0)))
    far = await _create(client, 1, address={"street": "X", "city": "Y", "zip": "1", "latitude": 0.0, "longitude": 2.0})
    near = await _create(client, 2, address={"street": "X", "city": "Y", "zip": "1", "latitude": 0.0, "longitude": 1.0})
    for d in (far, near):
        await client.post(f"/v1/deliveries/{d['id']}/assign", json={"courier_id": c.id})

    r = await client.post(f"/v1/couriers/{c.id}/route/optimize", json={"strategy": "nearest_neighbor"})
    assert r.status_code == 200, r.text
    assert r.json()["proposed"] == [near["id"], far["id"]]
    assert r.json()["applied"] is None

    r = await client.post(f"/v1/couriers/{c.id}/route/optimize", json={"strategy": "nearest_neighbor", "apply": True})
    assert r.json()["applied"]["order"] == [near["id"], far["id"]]

    r = await client.post(f"/v1/couriers/{c.id}/route/optimize", json={"strategy": "random"})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_active_couriers(client, couriers, courier):
    await couriers.create(new_courier("Zeca", active=False))
    r = await client.get("/v1/couriers", params={"refresh": "true"})
    assert [c["name"] for c in r.json()] == ["Ana"]


@pytest.mark.asyncio
async def test_external_event_and_webhook_test(client, subscriptions, services, sink):
    sub = subscriptions.add(new_subscription("https://erp.test/late", EventType.ENTREGA_ATRASADA))

    r = await client.post("/v1/events", json={"event_type": "ENTREGA_ATRASADA", "payload": {"entregaId": "dlv_1"}})
    assert r.status_code == 202
    await services.dispatcher.drain()
    assert len(sink.to("https://erp.test/late")) == 1

    r = await client.post(f"/v1/webhooks/{sub.id}/test")
    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert r.json()["status_code"] == 200

    r = await client.post("/v1/webhooks/whk_missing/test")
    assert r.status_code == 404

    r = await client.post("/v1/events", json={"event_type": "NOPE"})
    assert r.status_code == 422
