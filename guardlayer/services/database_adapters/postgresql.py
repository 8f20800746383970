"""
PostgreSQL数据库适配器
"""
import os
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote_plus

from .base import DatabaseAdapter


def _schema_whitelist() -> List[str]:
    """读取需要暴露的schema列表（SCHEMA_WHITELIST，逗号分隔）"""
    raw = os.getenv("SCHEMA_WHITELIST", "public")
    schemas = [s.strip() for s in raw.split(",") if s.strip()]
    return schemas or ["public"]


class PostgreSQLAdapter(DatabaseAdapter):
    """PostgreSQL数据库适配器"""

    write_privileges = frozenset({"INSERT", "UPDATE", "DELETE", "TRUNCATE", "REFERENCES"})

    def get_connection_string(self, config: Dict[str, Any]) -> str:
        """构建PostgreSQL连接字符串"""
        username = config.get('username') or ''
        password = config.get('password') or ''
        url = config.get('url', '')

        if username and password:
            return f"postgresql+psycopg2://{quote_plus(username)}:{quote_plus(password)}@{url}"
        elif username:
            return f"postgresql+psycopg2://{quote_plus(username)}@{url}"
        else:
            return f"postgresql+psycopg2://{url}"

    def get_driver_name(self) -> str:
        """获取PostgreSQL驱动名称"""
        return "postgresql+psycopg2"

    def get_introspection_query(self) -> Tuple[str, Dict[str, Any]]:
        """
        多个白名单schema中存在同名表时，只取白名单中排在最前的schema
        """
        return (
            "SELECT c.table_name, c.column_name, c.data_type "
            "FROM information_schema.columns c "
            "WHERE c.table_schema = ("
            "SELECT s.table_schema FROM information_schema.columns s "
            "WHERE s.table_name = c.table_name AND s.table_schema = ANY(%(schemas)s) "
            "ORDER BY array_position(%(schemas)s, s.table_schema::text) LIMIT 1"
            ") "
            "ORDER BY c.table_name, c.ordinal_position",
            {"schemas": _schema_whitelist()},
        )

    def get_privilege_query(self) -> Optional[str]:
        return (
            "SELECT privilege_type FROM information_schema.role_table_grants "
            "WHERE grantee = CURRENT_USER"
        )

    def format_identifier(self, name: str) -> str:
        """PostgreSQL使用双引号格式化标识符（仅在需要时）"""
        return f'"{name}"'

    def get_dialect_label(self) -> str:
        return "PostgreSQL"

    def get_db_type(self) -> str:
        """返回数据库类型"""
        return "postgres"
