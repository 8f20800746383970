"""
脱敏规则模型：列级规则、角色规则集、用户规则集、全局正则规则
"""
from sqlalchemy import Column, String, Text, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from .base import Base, TimestampMixin


class RedactionRule(Base, TimestampMixin):
    """列级脱敏规则表"""
    __tablename__ = "redaction_rules"
    __table_args__ = (
        UniqueConstraint("connection_id", "table_name", "column_name", name="uq_redaction_rule_column"),
    )

    id = Column(String(36), primary_key=True)
    connection_id = Column(String(36), ForeignKey("connections.id", ondelete="CASCADE"), nullable=False, index=True)
    table_name = Column(String(255), nullable=False)
    column_name = Column(String(255), nullable=False)
    rule_type = Column(String(20), nullable=False)  # REDACT, MASK_EMAIL, REMOVE, HASH
    replacement = Column(Text, nullable=True)
    pattern = Column(Text, nullable=True)

    connection = relationship("Connection", back_populates="redaction_rules")

    def __repr__(self):
        return f"<RedactionRule({self.table_name}.{self.column_name}={self.rule_type})>"


class RoleRedaction(Base, TimestampMixin):
    """角色级脱敏规则集（JSON文档）"""
    __tablename__ = "role_redactions"
    __table_args__ = (
        UniqueConstraint("role_id", "connection_id", name="uq_role_redaction"),
    )

    id = Column(String(36), primary_key=True)
    role_id = Column(String(36), nullable=False, index=True)
    role_name = Column(String(255), nullable=True)
    connection_id = Column(String(36), ForeignKey("connections.id", ondelete="CASCADE"), nullable=False, index=True)
    rules = Column(Text, nullable=False)  # JSON object

    connection = relationship("Connection", back_populates="role_redactions")


class UserRedaction(Base, TimestampMixin):
    """用户级脱敏规则集（JSON数组）"""
    __tablename__ = "user_redactions"
    __table_args__ = (
        UniqueConstraint("user_id", "connection_id", name="uq_user_redaction"),
    )

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=False, index=True)
    connection_id = Column(String(36), ForeignKey("connections.id", ondelete="CASCADE"), nullable=False, index=True)
    rules = Column(Text, nullable=False)  # JSON array

    connection = relationship("Connection", back_populates="user_redactions")


class GlobalPatternRule(Base, TimestampMixin):
    """全局正则脱敏规则表（作用于值，不区分列）"""
    __tablename__ = "global_pattern_rules"

    id = Column(String(36), primary_key=True)
    connection_id = Column(String(36), ForeignKey("connections.id", ondelete="CASCADE"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    pattern = Column(Text, nullable=False)
    replacement = Column(Text, nullable=True, default="***REDACTED***")
    role = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    connection = relationship("Connection", back_populates="global_patterns")

    def __repr__(self):
        return f"<GlobalPatternRule(id={self.id}, name={self.name})>"
