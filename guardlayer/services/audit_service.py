"""
审计日志服务
写入失败只记录日志，不影响主流程
"""
import json
from typing import Any, Dict, List, Optional

from ..database import Database, get_database
from ..models import AuditLog
from ..models.base import new_id
from ..utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_LIST_LIMIT = 100


class AuditService:
    """审计日志服务类"""

    def __init__(self, database: Optional[Database] = None):
        self.db = database or get_database()

    def record(
        self,
        action: str,
        user_id: Optional[str] = None,
        connection_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> Optional[AuditLog]:
        """
        写入一条审计日志

        Args:
            action: 动作名称，如 chat_query、redaction_created
            user_id: 操作者ID
            connection_id: 相关连接ID
            details: 任意可JSON序列化的详细信息

        Returns:
            写入的日志；写入失败时返回None
        """
        try:
            entry = AuditLog(
                id=new_id(),
                action=action,
                user_id=user_id,
                connection_id=connection_id,
                details=json.dumps(details, ensure_ascii=False, default=str) if details is not None else None,
            )
            with self.db.get_session() as session:
                session.add(entry)
            return entry
        except Exception as e:
            logger.error(f"写入审计日志失败: action={action}, error={e}", exc_info=True)
            return None

    def list(
        self,
        user_id: Optional[str] = None,
        connection_id: Optional[str] = None,
        action: Optional[str] = None,
        limit: int = DEFAULT_LIST_LIMIT
    ) -> List[AuditLog]:
        """按条件查询最近的审计日志（按时间倒序）"""
        with self.db.get_session() as session:
            query = session.query(AuditLog)
            if user_id:
                query = query.filter(AuditLog.user_id == user_id)
            if connection_id:
                query = query.filter(AuditLog.connection_id == connection_id)
            if action:
                query = query.filter(AuditLog.action == action)
            return query.order_by(AuditLog.created_at.desc()).limit(limit).all()


def parse_details(entry: AuditLog) -> Any:
    """解析审计日志详情；非JSON文本原样返回"""
    if not entry.details:
        return None
    try:
        return json.loads(entry.details)
    except json.JSONDecodeError:
        return entry.details
