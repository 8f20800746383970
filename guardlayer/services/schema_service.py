"""
表结构服务
先查缓存，未命中时通过连接器读取目标库表结构并写入缓存
"""
from ..models.connection import Connection
from ..utils.logger import get_logger
from .cache_service import SchemaCacheService
from .database_connector import DatabaseConnector
from .dto import SchemaSnapshot
from .errors import IntrospectionFailed

logger = get_logger(__name__)


class SchemaService:
    """表结构服务类"""

    def __init__(self, cache: SchemaCacheService, connector: DatabaseConnector):
        self.cache = cache
        self.connector = connector

    async def get_schema(self, connection: Connection) -> SchemaSnapshot:
        """
        获取连接的表结构快照

        缓存命中且未过期时不访问目标库；读取失败时抛出异常且不写缓存，
        下次调用会立即重新读取。

        Args:
            connection: 连接配置

        Returns:
            表结构快照

        Raises:
            IntrospectionFailed: 读取目标库表结构失败
        """
        cached = self.cache.get(connection.id)
        if cached is not None:
            return cached

        try:
            snapshot = await self.connector.introspect(connection)
        except Exception as e:
            logger.error(
                f"读取表结构失败: connection_id={connection.id}, error={e}",
                exc_info=True
            )
            raise IntrospectionFailed(connection.id, e) from e

        self.cache.set(connection.id, snapshot)
        return snapshot

    def invalidate(self, connection_id: str) -> bool:
        """连接配置变更或删除时清除缓存"""
        return self.cache.invalidate(connection_id)
