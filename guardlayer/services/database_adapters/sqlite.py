"""
SQLite数据库适配器
"""
from typing import Any, Dict, Optional, Tuple

from ...utils.logger import get_logger
from .base import DatabaseAdapter

logger = get_logger(__name__)


class SQLiteAdapter(DatabaseAdapter):
    """SQLite数据库适配器"""

    def get_connection_string(self, config: Dict[str, Any]) -> str:
        """构建SQLite连接字符串，url 可以是完整URL或文件路径"""
        url = config.get('url', '')
        if url.startswith("sqlite:"):
            return url
        return f"sqlite:///{url}"

    def get_driver_name(self) -> str:
        """获取SQLite驱动名称"""
        return "sqlite"

    def get_connect_args(self) -> Dict[str, Any]:
        """获取SQLite连接参数"""
        return {"check_same_thread": False}

    def get_introspection_query(self) -> Tuple[str, Dict[str, Any]]:
        return (
            "SELECT m.name AS table_name, p.name AS column_name, p.type AS data_type "
            "FROM sqlite_master m JOIN pragma_table_info(m.name) p "
            "WHERE m.type = 'table' AND m.name NOT LIKE 'sqlite_%' "
            "ORDER BY m.name, p.cid",
            {},
        )

    def get_privilege_query(self) -> Optional[str]:
        return None

    def probe_write(self, conn) -> bool:
        """尝试建表再删除，只读文件或只读挂载会失败"""
        try:
            conn.exec_driver_sql("CREATE TABLE IF NOT EXISTS __guardlayer_probe (id INTEGER)")
            conn.exec_driver_sql("DROP TABLE __guardlayer_probe")
            conn.commit()
            return True
        except Exception as e:
            logger.debug(f"SQLite写权限探测失败: {e}")
            conn.rollback()
            return False

    def format_identifier(self, name: str) -> str:
        """SQLite使用双引号或方括号格式化标识符"""
        return f'"{name}"'

    def get_dialect_label(self) -> str:
        return "SQLite"

    def get_db_type(self) -> str:
        """返回数据库类型"""
        return "sqlite"
