import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from askai.api.main import app, get_text2sql
from askai.exceptions import ProviderError
from askai.text2sql import Text2SQL

from .conftest import ACTIVE_QUERY, ACTIVE_SQL, FakeCompletionProvider


@pytest_asyncio.fixture(scope="function")
async def client(pipeline):
    app.dependency_overrides[get_text2sql] = lambda: pipeline

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def use_pipeline(pipeline):
    app.dependency_overrides[get_text2sql] = lambda: pipeline


@pytest.mark.asyncio
async def test_query_success(client):
    response = await client.post("/query", json={"query": ACTIVE_QUERY, "applicationId": 1, "userId": "u-1"})

    assert response.status_code == 200
    body = response.json()
    assert body["query"] == ACTIVE_QUERY
    assert body["generatedSQL"] == ACTIVE_SQL + ";"
    assert body["success"] is True
    assert body["columns"] == ["Id", "FirstName"]
    assert len(body["data"]) == 2
    assert body["error"] is None
    assert body["usageStats"]["totalRequests"] == 1
    assert body["usageStats"]["totalTokens"] > 0


@pytest.mark.asyncio
async def test_query_execution_failure_is_a_structured_result(client, embedding_provider, vector_index, datastore, ledger):
    use_pipeline(Text2SQL(
        embedding_provider, FakeCompletionProvider(text="SELECT x FROM Nowhere"), vector_index, datastore, ledger
    ))

    response = await client.post("/query", json={"query": ACTIVE_QUERY, "applicationId": 1})

    assert response.status_code == 200
    assert response.json()["success"] is False
    assert "Nowhere" in response.json()["error"]


@pytest.mark.asyncio
async def test_blank_query_is_bad_request(client):
    response = await client.post("/query", json={"query": "  ", "applicationId": 1})

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_missing_application_id_is_unprocessable(client):
    response = await client.post("/query", json={"query": ACTIVE_QUERY})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_validation_failure_is_bad_request(client, embedding_provider, vector_index, datastore, ledger):
    use_pipeline(Text2SQL(
        embedding_provider, FakeCompletionProvider(text="DROP TABLE Participant"), vector_index, datastore, ledger
    ))

    response = await client.post("/query", json={"query": ACTIVE_QUERY, "applicationId": 1})

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert "failed validation" in body["message"]


@pytest.mark.asyncio
async def test_quota_exceeded_is_not_acceptable(client, pipeline, ledger):
    ledger.token_limit = 1
    await ledger.record(1, 0, "u", 5, "ParticipantNQL", True, None, "earlier")

    response = await client.post("/query", json={"query": ACTIVE_QUERY, "applicationId": 1})

    assert response.status_code == 406
    assert response.json()["tokensUsed"] == 0


@pytest.mark.asyncio
async def test_provider_failure_is_server_error(client, embedding_provider, vector_index, datastore, ledger):
    use_pipeline(Text2SQL(
        embedding_provider, FakeCompletionProvider(error=ProviderError("down")), vector_index, datastore, ledger
    ))

    response = await client.post("/query", json={"query": ACTIVE_QUERY, "applicationId": 1})

    assert response.status_code == 500


@pytest.mark.asyncio
async def test_validate_endpoint(client):
    ok = await client.post("/validate", json={"sql": "SELECT * FROM Participant WHERE IsDeleted = 0"})
    bad = await client.post("/validate", json={"sql": "UPDATE X SET y=1"})

    assert ok.json() == {"is_valid": True, "error": None}
    assert bad.json() == {"is_valid": False, "error": "Query must start with SELECT"}


@pytest.mark.asyncio
async def test_usage_endpoint(client):
    await client.post("/query", json={"query": ACTIVE_QUERY, "applicationId": 1})

    response = await client.get("/usage/1")

    assert response.status_code == 200
    assert response.json()["totalRequests"] == 1
    assert response.json()["successfulRequests"] == 1


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
