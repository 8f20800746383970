"""
数据库适配器工厂
根据连接的 db_type 选择适配器
"""
from typing import Dict, List, Type

from .base import DatabaseAdapter
from .mysql import MySQLAdapter
from .postgresql import PostgreSQLAdapter
from .mssql import MSSQLAdapter
from .sqlite import SQLiteAdapter


class DatabaseAdapterFactory:
    """数据库适配器工厂类"""

    _adapters: Dict[str, Type[DatabaseAdapter]] = {
        "mysql": MySQLAdapter,
        "postgres": PostgreSQLAdapter,
        "mssql": MSSQLAdapter,
        "sqlite": SQLiteAdapter,
    }

    @classmethod
    def get_adapter(cls, db_type: str) -> DatabaseAdapter:
        """
        根据数据库类型获取对应的适配器实例

        Args:
            db_type: 数据库类型，如 'mysql', 'postgres', 'mssql', 'sqlite'

        Returns:
            数据库适配器实例

        Raises:
            ValueError: 如果数据库类型不支持
        """
        adapter_class = cls._adapters.get((db_type or "").lower())

        if not adapter_class:
            raise ValueError(
                f"不支持的数据库类型: {db_type}。"
                f"支持的类型: {', '.join(cls._adapters.keys())}"
            )

        return adapter_class()

    @classmethod
    def get_supported_types(cls) -> List[str]:
        """获取所有支持的数据库类型"""
        return list(cls._adapters.keys())

    @classmethod
    def is_supported(cls, db_type: str) -> bool:
        """检查是否支持指定的数据库类型"""
        return (db_type or "").lower() in cls._adapters
