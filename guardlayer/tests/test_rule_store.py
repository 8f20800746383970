"""
配置库读写测试
"""
import json

import pytest

from guardlayer.services.dto import ConnectionCheckResult, RuleType
from guardlayer.services.errors import ConnectionNotFound


@pytest.fixture
def connection(store):
    return store.create_connection(
        name="warehouse", db_type="postgres", url="localhost:5432/dw",
        username="reader", password="s3cret", user_id="u1",
    )


class TestConnections:
    """测试连接管理"""

    def test_password_is_encrypted(self, store, connection, encryption_service):
        saved = store.get_connection(connection.id)
        assert saved.encrypted_password != "s3cret"
        assert encryption_service.decrypt(saved.encrypted_password) == "s3cret"
        assert saved.status == "unknown"

    def test_missing_connection(self, store):
        with pytest.raises(ConnectionNotFound):
            store.get_connection("nope")

    def test_list_by_owner(self, store, connection):
        store.create_connection(name="other", db_type="sqlite", url="x.db", user_id="u2")
        assert [c.name for c in store.list_connections("u1")] == ["warehouse"]
        assert len(store.list_connections()) == 2

    def test_update_status(self, store, connection):
        updated = store.update_connection_status(
            connection.id, ConnectionCheckResult(status="active", has_write=True)
        )
        assert updated.status == "active"
        assert updated.has_write is True
        assert updated.last_checked is not None

    def test_delete_keeps_audit_logs(self, store, audit, connection):
        audit.record("chat_query", connection_id=connection.id, details={"question": "q"})
        store.set_column_rule(connection.id, "orders", "total", RuleType.REDACT)

        store.delete_connection(connection.id)

        entries = audit.list()
        assert len(entries) == 1
        assert entries[0].connection_id is None
        assert store.get_column_rules(connection.id) == []


class TestColumnRules:
    """测试列级规则"""

    def test_set_overwrites_same_column(self, store, connection):
        store.set_column_rule(connection.id, "orders", "total", RuleType.REDACT)
        store.set_column_rule(connection.id, "orders", "total", RuleType.HASH)
        rules = store.get_column_rules(connection.id)
        assert len(rules) == 1
        assert rules[0].rule_type == "HASH"

    def test_overwrite_ignores_case(self, store, connection):
        store.set_column_rule(connection.id, "orders", "customer_email", RuleType.REDACT)
        store.set_column_rule(connection.id, "Orders", "Customer_Email", RuleType.MASK_EMAIL)

        rules = store.get_column_rules(connection.id)
        assert len(rules) == 1
        assert (rules[0].table_name, rules[0].column_name, rules[0].rule_type) == (
            "Orders", "Customer_Email", "MASK_EMAIL"
        )

    def test_expose_deletes_case_insensitively(self, store, connection):
        store.set_column_rule(connection.id, "Orders", "Customer_Email", RuleType.MASK_EMAIL)

        result = store.set_column_rule(connection.id, "orders", "customer_email", RuleType.EXPOSE)

        assert result is None
        assert store.get_column_rules(connection.id) == []

    def test_expose_is_never_stored(self, store, connection):
        store.set_column_rule(connection.id, "orders", "id", RuleType.EXPOSE)
        assert store.get_column_rules(connection.id) == []

    def test_delete_and_clear(self, store, connection):
        rule = store.set_column_rule(connection.id, "orders", "total", RuleType.REDACT)
        store.set_column_rule(connection.id, "orders", "id", RuleType.REDACT)

        deleted = store.delete_column_rule(rule.id)
        assert deleted.column_name == "total"
        assert store.delete_column_rule(rule.id) is None

        assert store.clear_column_rules(connection.id) == 1
        assert store.get_column_rules(connection.id) == []


class TestRuleSets:
    """测试角色/用户规则集与全局正则规则"""

    def test_role_sets_follow_requested_order(self, store, connection):
        store.upsert_role_redaction("r1", connection.id, {"orders": {"total": {}}})
        store.upsert_role_redaction("r2", connection.id, {"orders": {"id": {}}}, role_name="analyst")

        sets = store.get_role_redaction_sets(connection.id, ["r2", "r1", "r3"])
        assert [s.role_id for s in sets] == ["r2", "r1"]
        assert store.get_role_redaction_sets(connection.id, []) == []

    def test_role_upsert_replaces_document(self, store, connection):
        store.upsert_role_redaction("r1", connection.id, {"orders": {"total": {}}})
        store.upsert_role_redaction("r1", connection.id, {"orders": {"id": {}}})

        records = store.list_role_redactions(connection.id)
        assert len(records) == 1
        assert json.loads(records[0].rules) == {"orders": {"id": {}}}

    def test_user_set(self, store, connection):
        rules = [{"tableName": "orders", "columnName": "total", "ruleType": "HASH"}]
        record = store.upsert_user_redaction("u9", connection.id, rules)

        assert json.loads(store.get_user_redaction_set(connection.id, "u9").rules) == rules
        assert store.get_user_redaction_set(connection.id, None) is None
        assert store.delete_user_redaction(record.id) is True
        assert store.get_user_redaction_set(connection.id, "u9") is None

    def test_global_patterns_scoped_and_active(self, store, connection):
        store.create_global_pattern_rule("all", r"\d{16}")
        store.create_global_pattern_rule("scoped", "secret", connection_id=connection.id)
        store.create_global_pattern_rule("off", "x", is_active=False)

        names = [r.name for r in store.get_global_pattern_rules(connection.id)]
        assert sorted(names) == ["all", "scoped"]
        assert store.get_global_pattern_rules("other-connection")[0].name == "all"

    def test_invalid_global_pattern(self, store):
        with pytest.raises(ValueError, match="Invalid regex pattern"):
            store.create_global_pattern_rule("bad", "(")


class TestMetadata:
    """测试表/列说明"""

    def test_table_and_column_notes(self, store, connection):
        store.upsert_table_metadata(connection.id, "orders", description="Customer orders", tags=["sales"])
        store.upsert_column_metadata(connection.id, "orders", "total", description="Order total", example="19.50")
        store.upsert_column_metadata(connection.id, "customers", "email", description="Contact email")

        notes = store.get_table_metadata(connection.id)
        assert [n.table_name for n in notes] == ["customers", "orders"]
        orders = notes[1]
        assert orders.description == "Customer orders"
        assert orders.tags == ["sales"]
        assert orders.columns[0].column_name == "total"
        assert orders.columns[0].example == "19.50"
