"""
测试公共夹具
配置库和目标库都使用 tmp_path 下的真实SQLite文件
"""
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest
from cryptography.fernet import Fernet
from sqlalchemy import create_engine

from guardlayer.database import Database
from guardlayer.services.audit_service import AuditService
from guardlayer.services.cache_service import SchemaCacheService
from guardlayer.services.database_connector import DatabaseConnector
from guardlayer.services.dto import ColumnInfo
from guardlayer.services.encryption_service import EncryptionService
from guardlayer.services.policy_resolver import PolicyResolver
from guardlayer.services.query_pipeline import QueryPipeline
from guardlayer.services.redaction_service import RedactionService, TokenSource
from guardlayer.services.rule_store import RuleStore
from guardlayer.services.schema_service import SchemaService


class SequenceTokenSource(TokenSource):
    """按顺序返回 t1, t2, ... 的令牌来源"""

    def __init__(self):
        self.count = 0

    def next_token(self) -> str:
        self.count += 1
        return f"t{self.count}"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def make_snapshot(tables):
    """{'orders': ['id', 'total']} -> SchemaSnapshot"""
    return {
        table: [ColumnInfo(name=name, type="TEXT") for name in columns]
        for table, columns in tables.items()
    }


def column_rule(table, column, rule_type="REDACT", replacement=None, pattern=None):
    return SimpleNamespace(
        table_name=table,
        column_name=column,
        rule_type=rule_type,
        replacement=replacement,
        pattern=pattern,
    )


def role_set(role_id, rules, role_name=None):
    return SimpleNamespace(role_id=role_id, role_name=role_name, rules=rules)


def user_set(rules):
    return SimpleNamespace(rules=rules)


def pattern_rule(name, pattern, replacement="***REDACTED***", is_active=True, role=None):
    return SimpleNamespace(
        name=name,
        pattern=pattern,
        replacement=replacement,
        is_active=is_active,
        role=role,
    )


@pytest.fixture
def encryption_service():
    return EncryptionService(Fernet.generate_key())


@pytest.fixture
def config_db(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'config.db'}")
    database.create_tables()
    yield database
    database.engine.dispose()


@pytest.fixture
def store(config_db, encryption_service):
    return RuleStore(config_db, encryption_service)


@pytest.fixture
def audit(config_db):
    return AuditService(config_db)


@pytest.fixture
def target_db(tmp_path):
    """目标库: customers / orders 两张表"""
    path = tmp_path / "target.db"
    engine = create_engine(f"sqlite:///{path}")
    with engine.begin() as conn:
        conn.exec_driver_sql(
            "CREATE TABLE customers (id INTEGER PRIMARY KEY, name TEXT, email TEXT)"
        )
        conn.exec_driver_sql(
            "CREATE TABLE orders (id INTEGER PRIMARY KEY, customer_email TEXT, total REAL)"
        )
        conn.exec_driver_sql(
            "INSERT INTO customers (id, name, email) VALUES "
            "(1, 'Alice', 'alice@example.com'), (2, 'Bob', 'bob@example.org')"
        )
        conn.exec_driver_sql(
            "INSERT INTO orders (id, customer_email, total) VALUES "
            "(1, 'alice@example.com', 19.5), (2, 'bob@example.org', 42.0)"
        )
    engine.dispose()
    return str(path)


@pytest.fixture
def sqlite_connection(store, target_db):
    return store.create_connection(name="shop", db_type="sqlite", url=target_db)


@pytest.fixture
def connector(encryption_service):
    return DatabaseConnector(encryption_service)


@pytest.fixture
def schema_cache():
    return SchemaCacheService(ttl=300, clock=FakeClock())


@pytest.fixture
def token_source():
    return SequenceTokenSource()


@pytest.fixture
def redaction(token_source):
    return RedactionService(token_source)


@pytest.fixture
def llm():
    """LLM服务替身，测试中设置 generate_sql / summarize_result 的返回值"""
    service = Mock()
    service.generate_sql = AsyncMock(return_value="SELECT id, total FROM orders")
    service.summarize_result = AsyncMock(return_value="There are 2 orders.")
    return service


@pytest.fixture
def pipeline(store, connector, schema_cache, llm, redaction, audit):
    resolver = PolicyResolver(store, SchemaService(schema_cache, connector))
    return QueryPipeline(resolver, store, connector, llm, redaction, audit)
