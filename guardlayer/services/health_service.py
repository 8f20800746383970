"""
连接健康检查
定期检测所有已保存连接的连通性与写权限，结果写回配置库
"""
import asyncio
import os
from typing import List

from ..models.connection import Connection
from ..utils.logger import get_logger
from .database_connector import DatabaseConnector
from .dto import ConnectionCheckResult
from .rule_store import RuleStore

logger = get_logger(__name__)

DEFAULT_HEALTH_CHECK_INTERVAL = 300  # 秒


def get_health_check_interval() -> int:
    """HEALTH_CHECK_INTERVAL 环境变量，0 表示关闭定期检查"""
    return int(os.getenv("HEALTH_CHECK_INTERVAL", DEFAULT_HEALTH_CHECK_INTERVAL))


class HealthService:
    """连接健康检查服务"""

    def __init__(self, store: RuleStore, connector: DatabaseConnector):
        self.store = store
        self.connector = connector

    async def check(self, connection: Connection) -> Connection:
        """
        检查单个连接并写回状态

        Returns:
            更新后的连接
        """
        result: ConnectionCheckResult = await self.connector.check_connection(connection)
        if result.status != "active":
            logger.warning(f"连接不可用: id={connection.id}, name={connection.name}, error={result.error}")
        if result.has_write:
            logger.warning(f"连接账号具有写权限，建议改用只读账号: id={connection.id}")
        return self.store.update_connection_status(connection.id, result)

    async def check_all(self) -> List[Connection]:
        """依次检查所有连接；单个连接失败不影响其他连接"""
        checked = []
        for connection in self.store.list_connections():
            try:
                checked.append(await self.check(connection))
            except Exception as e:
                logger.error(f"连接健康检查异常: id={connection.id}, error={e}", exc_info=True)
        logger.info(f"连接健康检查完成: {len(checked)} 个连接")
        return checked

    async def run_periodically(self, interval: int) -> None:
        """按固定间隔循环检查，直到任务被取消"""
        logger.info(f"启动连接健康检查任务: interval={interval}s")
        while True:
            try:
                await self.check_all()
            except Exception as e:
                logger.error(f"连接健康检查轮次失败: {e}", exc_info=True)
            await asyncio.sleep(interval)
