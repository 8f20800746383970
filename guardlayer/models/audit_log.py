"""
审计日志模型
"""
from sqlalchemy import Column, String, Text, DateTime

from .base import Base, _utcnow


class AuditLog(Base):
    """审计日志表"""
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True)
    action = Column(String(100), nullable=False, index=True)
    user_id = Column(String(36), nullable=True)
    connection_id = Column(String(36), nullable=True, index=True)  # 连接删除后置空
    details = Column(Text, nullable=True)  # JSON
    created_at = Column(DateTime, default=_utcnow, nullable=False)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action={self.action})>"
