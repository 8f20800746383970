"""
数据库适配器基类
定义所有数据库适配器必须实现的接口
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, FrozenSet, Optional, Tuple

from sqlalchemy.engine import Connection as SAConnection


class DatabaseAdapter(ABC):
    """数据库适配器基类"""

    # 权限探测结果中出现任一项即视为具有写权限
    write_privileges: FrozenSet[str] = frozenset()

    @abstractmethod
    def get_connection_string(self, config: Dict[str, Any]) -> str:
        """
        构建数据库连接字符串

        Args:
            config: 连接配置字典，包含 url, username, password

        Returns:
            SQLAlchemy连接字符串
        """
        pass

    @abstractmethod
    def get_driver_name(self) -> str:
        """
        获取SQLAlchemy驱动名称

        Returns:
            驱动名称，如 'mysql+pymysql', 'postgresql+psycopg2'
        """
        pass

    @abstractmethod
    def get_introspection_query(self) -> Tuple[str, Dict[str, Any]]:
        """
        获取读取表结构的SQL

        查询结果必须依次返回 table_name, column_name, data_type 三列，
        按表名、列序号排序。

        Returns:
            (SQL, 绑定参数)
        """
        pass

    @abstractmethod
    def get_privilege_query(self) -> Optional[str]:
        """获取权限探测SQL；返回None表示由 probe_write 自行探测"""
        pass

    def get_connect_args(self) -> Dict[str, Any]:
        """获取数据库连接参数"""
        return {}

    def format_identifier(self, name: str) -> str:
        """格式化标识符（表名、列名）"""
        return f'"{name}"'

    def get_dialect_label(self) -> str:
        """提示词中使用的SQL方言名称"""
        return self.get_db_type()

    def get_row_limit_hint(self) -> str:
        """提示词中的行数限制写法"""
        return "LIMIT"

    def probe_write(self, conn: SAConnection) -> bool:
        """
        探测当前账号是否具有写权限

        Args:
            conn: 已打开的目标库连接

        Returns:
            是否具有写权限
        """
        sql = self.get_privilege_query()
        if sql is None:
            return False

        result = conn.exec_driver_sql(sql)
        privileges = set()
        for row in result.fetchall():
            for value in row:
                if isinstance(value, str):
                    privileges.update(value.upper().replace(",", " ").split())
        return bool(privileges & self.write_privileges)

    def get_db_type(self) -> str:
        """
        获取数据库类型名称

        Returns:
            数据库类型，如 'mysql', 'postgres', 'sqlite'
        """
        return self.__class__.__name__.replace('Adapter', '').lower()
