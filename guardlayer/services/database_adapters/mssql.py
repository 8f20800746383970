"""
SQL Server数据库适配器
"""
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote_plus

from .base import DatabaseAdapter


class MSSQLAdapter(DatabaseAdapter):
    """SQL Server数据库适配器"""

    write_privileges = frozenset({"INSERT", "UPDATE", "DELETE", "ALTER", "CONTROL"})

    def get_connection_string(self, config: Dict[str, Any]) -> str:
        """构建SQL Server连接字符串"""
        username = config.get('username') or ''
        password = config.get('password') or ''
        url = config.get('url', '')

        if username and password:
            return f"mssql+pymssql://{quote_plus(username)}:{quote_plus(password)}@{url}"
        elif username:
            return f"mssql+pymssql://{quote_plus(username)}@{url}"
        else:
            return f"mssql+pymssql://{url}"

    def get_driver_name(self) -> str:
        return "mssql+pymssql"

    def get_introspection_query(self) -> Tuple[str, Dict[str, Any]]:
        return (
            "SELECT TABLE_NAME AS table_name, COLUMN_NAME AS column_name, "
            "DATA_TYPE AS data_type "
            "FROM INFORMATION_SCHEMA.COLUMNS "
            "ORDER BY TABLE_NAME, ORDINAL_POSITION",
            {},
        )

    def get_privilege_query(self) -> Optional[str]:
        return "SELECT permission_name FROM fn_my_permissions(NULL, 'DATABASE')"

    def format_identifier(self, name: str) -> str:
        """SQL Server使用方括号格式化标识符"""
        return f"[{name}]"

    def get_dialect_label(self) -> str:
        return "Microsoft SQL Server (T-SQL)"

    def get_row_limit_hint(self) -> str:
        return "TOP"

    def get_db_type(self) -> str:
        return "mssql"
