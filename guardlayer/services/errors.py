"""
服务层异常定义
所有异常都只影响单个请求，不会导致进程退出
"""
from typing import List, Optional


class GuardLayerError(Exception):
    """服务层异常基类"""


class ConnectionNotFound(GuardLayerError):
    """连接不存在"""

    def __init__(self, connection_id: str):
        super().__init__(f"Connection not found: {connection_id}")
        self.connection_id = connection_id


class InvalidQuery(GuardLayerError):
    """SQL未通过只读校验"""

    def __init__(self, reason: str, message: Optional[str] = None):
        super().__init__(message or reason)
        self.reason = reason


class IntrospectionFailed(GuardLayerError):
    """读取目标库表结构失败（不缓存，下次调用立即重试）"""

    def __init__(self, connection_id: str, cause: Exception):
        super().__init__(f"Schema introspection failed for {connection_id}: {cause}")
        self.connection_id = connection_id
        self.cause = cause


class RedactionPolicyError(GuardLayerError):
    """脱敏规则文档格式错误"""


class GenerationExhausted(GuardLayerError):
    """多次生成SQL均失败"""

    def __init__(
        self,
        attempts: int,
        last_sql: str,
        last_error: str,
        available_tables: List[str]
    ):
        super().__init__(f"Failed to generate valid SQL after {attempts} attempts")
        self.attempts = attempts
        self.last_sql = last_sql
        self.last_error = last_error
        self.available_tables = available_tables
