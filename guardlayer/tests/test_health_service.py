"""
连接健康检查与身份中间件测试
"""
import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest

from guardlayer.middleware import parse_role_ids
from guardlayer.services.dto import ConnectionCheckResult
from guardlayer.services.health_service import HealthService, get_health_check_interval


class TestHealthService:
    """测试健康检查"""

    @pytest.mark.asyncio
    async def test_check_sqlite_connection(self, store, connector, sqlite_connection):
        checked = await HealthService(store, connector).check(sqlite_connection)

        assert checked.status == "active"
        assert checked.has_write is True
        assert store.get_connection(sqlite_connection.id).last_checked is not None

    @pytest.mark.asyncio
    async def test_unreachable_connection_marked_down(self, store, connector, tmp_path):
        connection = store.create_connection(
            name="missing", db_type="sqlite", url=str(tmp_path / "no" / "such" / "dir.db")
        )
        checked = await HealthService(store, connector).check(connection)

        assert checked.status == "down"
        assert checked.has_write is False

    @pytest.mark.asyncio
    async def test_check_all_continues_after_failure(self):
        store = Mock()
        store.list_connections.return_value = [SimpleNamespace(id="a", name="a"), SimpleNamespace(id="b", name="b")]
        store.update_connection_status.side_effect = [RuntimeError("db locked"), "b-updated"]
        connector = Mock()
        connector.check_connection = AsyncMock(return_value=ConnectionCheckResult(status="active"))

        checked = await HealthService(store, connector).check_all()

        assert checked == ["b-updated"]
        assert connector.check_connection.await_count == 2

    @pytest.mark.asyncio
    async def test_run_periodically_stops_on_cancel(self):
        service = HealthService(Mock(), Mock())
        service.check_all = AsyncMock(return_value=[])

        task = asyncio.create_task(service.run_periodically(3600))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        service.check_all.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_run_periodically_survives_store_error(self):
        store = Mock()
        failures = [RuntimeError("config db locked")]

        def list_connections():
            if failures:
                raise failures.pop()
            return []

        store.list_connections.side_effect = list_connections
        service = HealthService(store, Mock())

        task = asyncio.create_task(service.run_periodically(0))
        for _ in range(5):
            await asyncio.sleep(0)

        assert not task.done()
        assert store.list_connections.call_count >= 2
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    def test_interval_from_environment(self, monkeypatch):
        monkeypatch.setenv("HEALTH_CHECK_INTERVAL", "0")
        assert get_health_check_interval() == 0
        monkeypatch.delenv("HEALTH_CHECK_INTERVAL")
        assert get_health_check_interval() == 300


def test_parse_role_ids():
    assert parse_role_ids("r1, r2,,r3 ") == ["r1", "r2", "r3"]
    assert parse_role_ids("") == []
