"""
HTTP接口测试
配置库与目标库使用临时SQLite文件，LLM使用替身
"""
import pytest
from fastapi.testclient import TestClient

from guardlayer.database import Database
from guardlayer.main import create_app

ANALYST = {"X-User-ID": "u1", "X-Role-IDs": "analyst"}


@pytest.fixture
def client(tmp_path, llm):
    app = create_app(
        database=Database(f"sqlite:///{tmp_path / 'routes.db'}"),
        llm=llm,
        health_check_interval=0,
    )
    with TestClient(app) as test_client:
        yield test_client
    app.state.database.engine.dispose()


@pytest.fixture
def connection_id(client, target_db):
    response = client.post(
        "/api/connections",
        json={"name": "shop", "dbType": "sqlite", "url": target_db},
        headers=ANALYST,
    )
    assert response.status_code == 201
    return response.json()["id"]


def _actions(client, **params):
    return [entry["action"] for entry in client.get("/api/audit", params=params).json()]


class TestConnectionRoutes:
    """测试连接接口"""

    def test_create_runs_health_check(self, client, connection_id):
        connections = client.get("/api/connections").json()
        assert len(connections) == 1
        assert connections[0]["status"] == "active"
        assert connections[0]["has_write"] is True
        assert "password" not in connections[0]
        assert "connection_created" in _actions(client, connectionId=connection_id)

    def test_unsupported_db_type(self, client):
        response = client.post("/api/connections", json={"name": "x", "dbType": "oracle", "url": "h/db"})
        assert response.status_code == 400

    def test_list_mine(self, client, connection_id):
        assert len(client.get("/api/connections", params={"mine": True}, headers=ANALYST).json()) == 1
        assert client.get("/api/connections", params={"mine": True}, headers={"X-User-ID": "u2"}).json() == []

    def test_test_connection_is_not_saved(self, client, target_db):
        response = client.post("/api/connections/test", json={"dbType": "sqlite", "url": target_db})
        assert response.status_code == 200
        assert response.json()["status"] == "active"
        assert client.get("/api/connections").json() == []

    def test_schema_hides_redacted_columns(self, client, connection_id):
        client.post("/api/redactions", json={
            "connectionId": connection_id,
            "tableName": "customers",
            "columnName": "email",
            "ruleType": "REDACT",
        })

        body = client.get(f"/api/connections/{connection_id}/schema", headers=ANALYST).json()

        assert [c["name"] for c in body["tables"]["customers"]] == ["id", "name"]
        assert body["redacted_columns"] == {"customers": ["email"]}

    def test_delete_keeps_audit(self, client, connection_id):
        response = client.delete(f"/api/connections/{connection_id}")
        assert response.json() == {"ok": True, "id": connection_id}
        assert client.get("/api/connections").json() == []
        assert client.delete(f"/api/connections/{connection_id}").status_code == 404
        assert "connection_deleted" in _actions(client)

    def test_unknown_connection_schema(self, client):
        assert client.get("/api/connections/missing/schema").status_code == 404


class TestRedactionRoutes:
    """测试脱敏规则接口"""

    def test_expose_removes_rule(self, client, connection_id):
        rule = {"connectionId": connection_id, "tableName": "orders", "columnName": "total"}
        created = client.post("/api/redactions", json={**rule, "ruleType": "HASH"})
        assert created.json()["rule_type"] == "HASH"

        exposed = client.post("/api/redactions", json={**rule, "ruleType": "EXPOSE"})

        assert exposed.json() == {"ok": True, "removed": 1}
        assert client.get(f"/api/redactions/{connection_id}").json() == []

    def test_apply_to_table(self, client, connection_id):
        response = client.post("/api/redactions/table", json={
            "connectionId": connection_id, "tableName": "orders", "ruleType": "REDACT",
        })
        assert response.json()["count"] == 3
        assert len(client.get(f"/api/redactions/{connection_id}").json()) == 3

        cleared = client.delete("/api/redactions/clear", params={"connectionId": connection_id}).json()
        assert cleared == {"ok": True, "deleted": 3, "scope": "connection"}

    def test_apply_to_missing_table(self, client, connection_id):
        response = client.post("/api/redactions/table", json={
            "connectionId": connection_id, "tableName": "invoices", "ruleType": "REDACT",
        })
        assert response.status_code == 404

    def test_expose_not_allowed_for_table(self, client, connection_id):
        response = client.post("/api/redactions/table", json={
            "connectionId": connection_id, "tableName": "orders", "ruleType": "EXPOSE",
        })
        assert response.status_code == 400

    def test_malformed_role_document_rejected(self, client, connection_id):
        response = client.post("/api/redactions/role", json={
            "connectionId": connection_id, "roleId": "analyst", "rules": {"orders": ["total"]},
        })
        assert response.status_code == 400
        assert client.get(f"/api/redactions/role/{connection_id}").json() == []
        assert "redaction_error" in _actions(client)

    def test_role_set_hides_column_for_role(self, client, connection_id):
        saved = client.post("/api/redactions/role", json={
            "connectionId": connection_id, "roleId": "analyst", "rules": {"orders": {"total": {}}},
        })
        assert saved.status_code == 200

        analyst = client.get(f"/api/connections/{connection_id}/schema", headers=ANALYST).json()
        anonymous = client.get(f"/api/connections/{connection_id}/schema").json()

        assert analyst["redacted_columns"] == {"orders": ["total"]}
        assert anonymous["redacted_columns"] == {}

    def test_invalid_global_pattern(self, client, connection_id):
        response = client.post("/api/redactions/global", json={
            "connectionId": connection_id, "name": "bad", "pattern": "(",
        })
        assert response.status_code == 400

    def test_global_pattern_unknown_connection(self, client):
        response = client.post("/api/redactions/global", json={
            "connectionId": "missing", "name": "cards", "pattern": r"\d{16}",
        })
        assert response.status_code == 404


class TestQueryRoutes:
    """测试问答与手动SQL接口"""

    def test_chat_answer(self, client, connection_id, llm):
        response = client.post("/api/chat", json={
            "question": "How many orders are there?", "connectionId": connection_id,
        }, headers=ANALYST)

        assert response.status_code == 200
        body = response.json()
        assert body["sql"] == "SELECT id, total FROM orders"
        assert body["summary"] == "There are 2 orders."
        assert body["rowCount"] == 2
        assert "chat_query" in _actions(client, userId="u1")

    def test_chat_exhausted(self, client, connection_id, llm):
        llm.generate_sql.return_value = "DELETE FROM orders"

        response = client.post("/api/chat", json={
            "question": "Remove every order please", "connectionId": connection_id,
        })

        assert response.status_code == 400
        body = response.json()
        assert body["lastSQL"] == "DELETE FROM orders"
        assert sorted(body["availableTables"]) == ["customers", "orders"]
        assert body["hint"]
        assert llm.generate_sql.await_count == 3

    def test_chat_question_too_short(self, client, connection_id):
        response = client.post("/api/chat", json={"question": "hi", "connectionId": connection_id})
        assert response.status_code == 422

    def test_run_query_redacts(self, client, connection_id):
        client.post("/api/redactions", json={
            "connectionId": connection_id,
            "tableName": "customers",
            "columnName": "email",
            "ruleType": "REDACT",
        })

        response = client.post("/api/query/run", json={
            "connectionId": connection_id, "sql": "SELECT name, email FROM customers ORDER BY id",
        })

        body = response.json()
        assert body["rowCount"] == 2
        assert body["rows"][0] == {"name": "Alice", "email": "■■■"}
        assert body["hiddenColumns"] == ["customers.email"]

    def test_run_query_rejects_writes(self, client, connection_id):
        response = client.post("/api/query/run", json={
            "connectionId": connection_id, "sql": "DROP TABLE orders",
        })
        assert response.status_code == 400


class TestMiscRoutes:
    """测试元数据、缓存与审计接口"""

    def test_metadata_notes(self, client, connection_id):
        client.post("/api/metadata/table", json={
            "connectionId": connection_id, "tableName": "orders", "description": "Sales orders",
        })
        client.post("/api/metadata/column", json={
            "connectionId": connection_id, "tableName": "orders", "columnName": "total",
            "description": "Order total", "importance": 8,
        })

        notes = client.get(f"/api/metadata/{connection_id}").json()
        assert notes[0]["table_name"] == "orders"
        assert notes[0]["columns"][0]["column_name"] == "total"

    def test_cache_stats_and_invalidate(self, client, connection_id):
        client.get(f"/api/connections/{connection_id}/schema")
        stats = client.get("/api/cache/stats").json()
        assert stats["size"] == 1

        assert client.delete(f"/api/cache/{connection_id}").json() == {"invalidated": True}
        assert client.post("/api/cache/clear").status_code == 204

    def test_audit_filters(self, client, connection_id):
        client.post("/api/redactions", json={
            "connectionId": connection_id, "tableName": "orders", "columnName": "total", "ruleType": "REDACT",
        }, headers=ANALYST)

        entries = client.get("/api/audit", params={"action": "redaction_created"}).json()
        assert len(entries) == 1
        assert entries[0]["user_id"] == "u1"
        assert entries[0]["details"]["columnName"] == "total"

    def test_root_and_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}
        assert client.get("/").json()["status"] == "running"
