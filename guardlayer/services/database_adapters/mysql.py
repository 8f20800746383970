"""
MySQL数据库适配器
"""
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote_plus

from .base import DatabaseAdapter


class MySQLAdapter(DatabaseAdapter):
    """MySQL数据库适配器"""

    write_privileges = frozenset({"INSERT", "UPDATE", "DELETE", "ALTER", "DROP"})

    def get_connection_string(self, config: Dict[str, Any]) -> str:
        """构建MySQL连接字符串"""
        username = config.get('username') or ''
        password = config.get('password') or ''
        url = config.get('url', '')

        if username and password:
            return f"mysql+pymysql://{quote_plus(username)}:{quote_plus(password)}@{url}"
        elif username:
            return f"mysql+pymysql://{quote_plus(username)}@{url}"
        else:
            return f"mysql+pymysql://{url}"

    def get_driver_name(self) -> str:
        """获取MySQL驱动名称"""
        return "mysql+pymysql"

    def get_introspection_query(self) -> Tuple[str, Dict[str, Any]]:
        return (
            "SELECT TABLE_NAME AS table_name, COLUMN_NAME AS column_name, "
            "COLUMN_TYPE AS data_type "
            "FROM information_schema.COLUMNS "
            "WHERE TABLE_SCHEMA = DATABASE() "
            "ORDER BY TABLE_NAME, ORDINAL_POSITION",
            {},
        )

    def get_privilege_query(self) -> Optional[str]:
        return "SHOW GRANTS FOR CURRENT_USER()"

    def probe_write(self, conn) -> bool:
        # GRANT 语句是整行文本，"ALL PRIVILEGES" 同样视为可写
        result = conn.exec_driver_sql(self.get_privilege_query())
        grants = " ".join(str(value) for row in result.fetchall() for value in row).upper()
        if "ALL PRIVILEGES" in grants:
            return True
        return any(privilege in grants for privilege in self.write_privileges)

    def format_identifier(self, name: str) -> str:
        """MySQL使用反引号格式化标识符"""
        return f"`{name}`"

    def get_dialect_label(self) -> str:
        return "MySQL"

    def get_db_type(self) -> str:
        """返回数据库类型"""
        return "mysql"
