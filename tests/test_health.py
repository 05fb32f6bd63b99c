import pytest


@pytest.mark.asyncio
async def test_health(client):
    r = await client.get("/v1/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_unknown_route_is_plain_404(client):
    r = await client.get("/v1/nope")
    assert r.status_code == 404
