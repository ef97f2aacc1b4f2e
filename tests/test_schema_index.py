import asyncio

import pytest
import pytest_asyncio
from httpx import AsyncClient

from querylens.ai_feature.embeddings import EmbeddingClient
from querylens.ai_feature.schema_index import (
    InMemorySchemaIndex,
    SchemaIndexService,
    SqlSchemaIndex,
)
from querylens.core.errors import DimensionMismatch
from querylens.core.repositories import SchemaDescriptorRepository
from querylens.core.schemas import SchemaDescriptor

from conftest import CUSTOMERS_DESCRIPTION, ORDERS_DESCRIPTION


def descriptor(name, vector, database_id=1):
    return SchemaDescriptor(
        database_id=database_id, name=name, description=f"{name} table", vector=vector
    )


@pytest_asyncio.fixture(scope="function")
async def schema_service(db_session, provider, shop_database):
    index = SqlSchemaIndex(SchemaDescriptorRepository(db_session))
    service = SchemaIndexService(index, EmbeddingClient(provider, "text-embedding-3-small"))
    await service.index_schema(shop_database.id, "orders", ORDERS_DESCRIPTION)
    await service.index_schema(shop_database.id, "customers", CUSTOMERS_DESCRIPTION)
    return service


@pytest.mark.asyncio
async def test_in_memory_index_assigns_ids_and_lists_per_database():
    index = InMemorySchemaIndex()
    first = await index.add(descriptor("orders", [1.0, 0.0]))
    second = await index.add(descriptor("customers", [0.0, 1.0]))
    await index.add(descriptor("products", [1.0, 1.0], database_id=2))

    assert (first.id, second.id) == (1, 2)
    assert [d.name for d in await index.list(1)] == ["orders", "customers"]
    assert [d.name for d in await index.list(2)] == ["products"]


@pytest.mark.asyncio
async def test_in_memory_reindex_replaces_whole_record():
    index = InMemorySchemaIndex()
    original = await index.add(descriptor("orders", [1.0, 0.0]))
    replaced = await index.add(
        SchemaDescriptor(
            database_id=1, name="orders", description="orders v2", vector=[0.0, 1.0]
        )
    )

    assert replaced.id == original.id
    assert replaced.created_at == original.created_at
    assert replaced.updated_at is not None
    stored = await index.list(1)
    assert len(stored) == 1
    assert stored[0].description == "orders v2"
    assert stored[0].vector == [0.0, 1.0]


@pytest.mark.asyncio
async def test_in_memory_concurrent_adds_get_distinct_ids():
    index = InMemorySchemaIndex()
    added = await asyncio.gather(
        *(index.add(descriptor(f"table_{i}", [float(i), 1.0])) for i in range(20))
    )
    assert len({d.id for d in added}) == 20
    assert len(await index.list(1)) == 20


@pytest.mark.asyncio
async def test_in_memory_remove():
    index = InMemorySchemaIndex()
    stored = await index.add(descriptor("orders", [1.0]))
    assert await index.remove(stored.id) is True
    assert await index.remove(stored.id) is False
    assert await index.get(stored.id) is None


@pytest.mark.asyncio
async def test_search_ranks_by_similarity():
    index = InMemorySchemaIndex()
    await index.add(descriptor("far", [0.0, 1.0]))
    await index.add(descriptor("close", [1.0, 0.0]))

    scored = await index.search(1, [1.0, 0.1], top_k=2)
    assert [d.name for d, _ in scored] == ["close", "far"]
    assert scored[0][1] > scored[1][1]


@pytest.mark.asyncio
async def test_search_with_mismatched_dimensions_raises():
    index = InMemorySchemaIndex()
    await index.add(descriptor("orders", [1.0, 0.0, 0.0]))
    with pytest.raises(DimensionMismatch):
        await index.search(1, [1.0, 0.0], top_k=1)


@pytest.mark.asyncio
async def test_retrieval_picks_orders_for_an_orders_question(schema_service, shop_database):
    relevant = await schema_service.retrieve_relevant_schemas(
        shop_database.id, "show me all orders", top_k=1
    )
    assert [s.schema_name for s in relevant] == ["orders"]
    assert relevant[0].schema_description == ORDERS_DESCRIPTION


@pytest.mark.asyncio
async def test_retrieval_for_unindexed_database_is_empty(schema_service):
    assert await schema_service.retrieve_relevant_schemas(999, "show me all orders", 5) == []


@pytest.mark.asyncio
async def test_sql_index_reindex_keeps_one_row(schema_service, shop_database, db_session):
    repository = SchemaDescriptorRepository(db_session)
    before = await repository.find_by_name(shop_database.id, "orders")

    await schema_service.index_schema(shop_database.id, "orders", "orders with price and total")

    stored = await repository.find_all_by_database_id(shop_database.id)
    assert [d.name for d in stored] == ["orders", "customers"]
    after = await repository.find_by_name(shop_database.id, "orders")
    assert after.id == before.id
    assert after.description == "orders with price and total"
    assert after.updated_at is not None


# ---------------------------------------------------------------------------
# /schema-embeddings API
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_index_endpoint(client: AsyncClient, shop_database):
    payload = {
        "databaseId": shop_database.id,
        "schemaName": "orders",
        "schemaDescription": ORDERS_DESCRIPTION,
        "metadata": {"rows": 2},
    }
    response = await client.post("/schema-embeddings/index", json=payload)

    assert response.status_code == 201
    data = response.json()
    assert data["schemaName"] == "orders"
    assert data["databaseId"] == shop_database.id
    assert data["dimension"] == 6
    assert data["metadata"] == {"rows": 2}
    assert "id" in data


@pytest.mark.asyncio
async def test_index_endpoint_unknown_database(client: AsyncClient):
    payload = {"databaseId": 404, "schemaName": "orders", "schemaDescription": "x"}
    response = await client.post("/schema-embeddings/index", json=payload)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_search_list_and_delete_endpoints(client: AsyncClient, shop_database):
    for name, description in (("orders", ORDERS_DESCRIPTION), ("customers", CUSTOMERS_DESCRIPTION)):
        await client.post(
            "/schema-embeddings/index",
            json={
                "databaseId": shop_database.id,
                "schemaName": name,
                "schemaDescription": description,
            },
        )

    search = await client.post(
        "/schema-embeddings/search",
        json={"databaseId": shop_database.id, "query": "show me all orders", "topK": 2},
    )
    assert search.status_code == 200
    results = search.json()["results"]
    assert search.json()["count"] == 2
    assert results[0]["schemaName"] == "orders"
    assert results[0]["similarity"] > results[1]["similarity"]

    listed = await client.get(f"/schema-embeddings/database/{shop_database.id}")
    assert [s["schemaName"] for s in listed.json()] == ["orders", "customers"]

    orders_id = listed.json()[0]["id"]
    deleted = await client.delete(f"/schema-embeddings/{orders_id}")
    assert deleted.status_code == 200

    missing = await client.delete(f"/schema-embeddings/{orders_id}")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_index_endpoint_without_api_key(client: AsyncClient, shop_database, provider):
    provider.api_key = None
    payload = {
        "databaseId": shop_database.id,
        "schemaName": "orders",
        "schemaDescription": ORDERS_DESCRIPTION,
    }
    response = await client.post("/schema-embeddings/index", json=payload)
    assert response.status_code == 503
