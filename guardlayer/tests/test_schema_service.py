"""
表结构服务测试
"""
from unittest.mock import AsyncMock, Mock

import pytest

from guardlayer.services.cache_service import SchemaCacheService
from guardlayer.services.database_connector import DatabaseConnector
from guardlayer.services.errors import IntrospectionFailed
from guardlayer.services.schema_service import SchemaService

from conftest import FakeClock, make_snapshot


SNAPSHOT = make_snapshot({"orders": ["id", "total"]})


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def connector():
    connector = Mock()
    connector.introspect = AsyncMock(return_value=SNAPSHOT)
    return connector


@pytest.fixture
def service(clock, connector):
    return SchemaService(SchemaCacheService(ttl=60, clock=clock), connector)


class TestSchemaService:
    """测试缓存读取与失效"""

    @pytest.mark.asyncio
    async def test_second_call_served_from_cache(self, service, connector):
        connection = Mock(id="c1")
        assert await service.get_schema(connection) == SNAPSHOT
        assert await service.get_schema(connection) == SNAPSHOT
        connector.introspect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reintrospects_after_ttl(self, service, connector, clock):
        connection = Mock(id="c1")
        await service.get_schema(connection)
        clock.advance(60)
        await service.get_schema(connection)
        assert connector.introspect.await_count == 2

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, service, connector):
        connection = Mock(id="c1")
        connector.introspect.side_effect = [RuntimeError("connection refused"), SNAPSHOT]

        with pytest.raises(IntrospectionFailed) as exc_info:
            await service.get_schema(connection)
        assert exc_info.value.connection_id == "c1"
        assert isinstance(exc_info.value.cause, RuntimeError)

        assert await service.get_schema(connection) == SNAPSHOT
        assert connector.introspect.await_count == 2

    @pytest.mark.asyncio
    async def test_invalidate_forces_refresh(self, service, connector):
        connection = Mock(id="c1")
        await service.get_schema(connection)
        assert service.invalidate("c1") is True
        await service.get_schema(connection)
        assert connector.introspect.await_count == 2

    @pytest.mark.asyncio
    async def test_real_sqlite_introspection(self, sqlite_connection, encryption_service):
        service = SchemaService(SchemaCacheService(ttl=60), DatabaseConnector(encryption_service))
        snapshot = await service.get_schema(sqlite_connection)

        assert list(snapshot) == ["customers", "orders"]
        assert [c.name for c in snapshot["orders"]] == ["id", "customer_email", "total"]
        assert snapshot["orders"][2].type == "REAL"
