import pytest
from httpx import ASGITransport, AsyncClient

from services.api.main import create_app


@pytest.mark.asyncio()
async def test_health_endpoint(settings) -> None:
    app = create_app(settings)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
