"""
目标数据库连接器
每次操作（读取表结构、执行查询、权限探测）都创建独立的短生命周期引擎，用完立即释放
"""
import asyncio
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

from ..models.connection import Connection
from ..utils.logger import get_logger, log_database_connection_error
from .database_adapters import DatabaseAdapter, DatabaseAdapterFactory
from .dto import ColumnInfo, ConnectionCheckResult, SchemaSnapshot
from .encryption_service import EncryptionService, get_encryption_service

logger = get_logger(__name__)


def _mask_url(engine: Engine) -> str:
    return engine.url.render_as_string(hide_password=True)


class DatabaseConnector:
    """目标数据库连接器类"""

    def __init__(self, encryption_service: Optional[EncryptionService] = None):
        """
        初始化连接器

        Args:
            encryption_service: 解密连接密码用，默认使用全局实例
        """
        self.encryption_service = encryption_service or get_encryption_service()

    def _decrypt_password(self, connection: Connection) -> str:
        if not connection.encrypted_password:
            return ""
        try:
            return self.encryption_service.decrypt(connection.encrypted_password)
        except Exception as e:
            logger.error(f"解密数据库密码失败: connection_id={connection.id}, error={e}")
            raise ValueError("无法解密数据库密码")

    def _create_engine(
        self,
        db_type: str,
        url: str,
        username: Optional[str],
        password: Optional[str]
    ) -> Tuple[Engine, DatabaseAdapter]:
        """
        创建一次性引擎（NullPool，不保留连接）

        Raises:
            ValueError: 如果数据库类型不支持
        """
        adapter = DatabaseAdapterFactory.get_adapter(db_type)
        connection_string = adapter.get_connection_string({
            'url': url,
            'username': username,
            'password': password,
        })
        engine = create_engine(
            connection_string,
            poolclass=NullPool,
            connect_args=adapter.get_connect_args()
        )
        return engine, adapter

    def _engine_for(self, connection: Connection) -> Tuple[Engine, DatabaseAdapter]:
        return self._create_engine(
            connection.db_type,
            connection.url,
            connection.username,
            self._decrypt_password(connection)
        )

    def _introspect_sync(self, connection: Connection) -> SchemaSnapshot:
        engine, adapter = self._engine_for(connection)
        try:
            sql, params = adapter.get_introspection_query()
            with engine.connect() as conn:
                if params:
                    result = conn.exec_driver_sql(sql, params)
                else:
                    result = conn.exec_driver_sql(sql)
                rows = result.fetchall()
        finally:
            engine.dispose()

        snapshot: SchemaSnapshot = {}
        for table_name, column_name, data_type in rows:
            snapshot.setdefault(table_name, []).append(
                ColumnInfo(name=column_name, type=str(data_type or ""))
            )

        logger.info(
            f"读取表结构成功: connection_id={connection.id}, tables={len(snapshot)}"
        )
        return snapshot

    async def introspect(self, connection: Connection) -> SchemaSnapshot:
        """
        读取目标库的表结构

        Args:
            connection: 连接配置

        Returns:
            表名到有序列信息的映射
        """
        return await asyncio.to_thread(self._introspect_sync, connection)

    def _execute_sync(self, connection: Connection, sql: str) -> List[Dict[str, Any]]:
        engine, _ = self._engine_for(connection)
        logger.debug(
            f"准备执行SQL查询:\n"
            f"  连接: {connection.name} ({connection.db_type})\n"
            f"  连接URL: {_mask_url(engine)}\n"
            f"  SQL: {sql[:200]}{'...' if len(sql) > 200 else ''}"
        )
        try:
            with engine.connect() as conn:
                # 按原样交给驱动，避免SQL文本中的冒号被当作绑定参数
                result = conn.exec_driver_sql(sql)
                if not result.returns_rows:
                    return []
                columns = list(result.keys())
                data = [dict(zip(columns, row)) for row in result.fetchall()]
                conn.rollback()
        finally:
            engine.dispose()

        logger.info(
            f"SQL查询成功: connection_id={connection.id}, "
            f"rows={len(data)}, columns={len(columns)}"
        )
        return data

    async def execute(self, connection: Connection, sql: str) -> List[Dict[str, Any]]:
        """
        在目标库执行SQL并返回全部结果行

        Args:
            connection: 连接配置
            sql: 已通过只读校验的SQL

        Returns:
            结果行列表（列名 -> 值）

        Raises:
            Exception: 驱动层错误原样抛出，由调用方决定是否重试
        """
        return await asyncio.to_thread(self._execute_sync, connection, sql)

    def _check_sync(
        self,
        db_type: str,
        url: str,
        username: Optional[str],
        password: Optional[str]
    ) -> ConnectionCheckResult:
        try:
            engine, adapter = self._create_engine(db_type, url, username, password)
        except ValueError as e:
            return ConnectionCheckResult(status="down", error=str(e))

        try:
            with engine.connect() as conn:
                conn.exec_driver_sql("SELECT 1")
                try:
                    has_write = adapter.probe_write(conn)
                except Exception as e:
                    # 权限探测失败不影响连通性判断
                    logger.warning(f"写权限探测失败: {e}")
                    has_write = False
            return ConnectionCheckResult(status="active", has_write=has_write)
        except Exception as e:
            log_database_connection_error(
                logger,
                {"db_type": db_type, "url": url, "username": username, "password": password},
                e
            )
            return ConnectionCheckResult(status="down", error=str(e))
        finally:
            engine.dispose()

    async def test_connection(
        self,
        db_type: str,
        url: str,
        username: Optional[str] = None,
        password: Optional[str] = None
    ) -> ConnectionCheckResult:
        """
        测试尚未保存的连接参数

        Returns:
            ConnectionCheckResult（连接失败不抛异常）
        """
        return await asyncio.to_thread(self._check_sync, db_type, url, username, password)

    async def check_connection(self, connection: Connection) -> ConnectionCheckResult:
        """测试已保存的连接，并探测写权限"""
        try:
            password = self._decrypt_password(connection)
        except ValueError as e:
            return ConnectionCheckResult(status="down", error=str(e))
        return await self.test_connection(
            connection.db_type, connection.url, connection.username, password
        )


# 全局连接器实例
_db_connector = None


def get_database_connector() -> DatabaseConnector:
    """获取全局数据库连接器实例"""
    global _db_connector
    if _db_connector is None:
        _db_connector = DatabaseConnector()
    return _db_connector
