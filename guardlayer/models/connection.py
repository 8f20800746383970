"""
目标数据库连接模型
"""
from sqlalchemy import Column, String, Text, Boolean, DateTime
from sqlalchemy.orm import relationship

from .base import Base, TimestampMixin


class Connection(Base, TimestampMixin):
    """目标数据库连接表"""
    __tablename__ = "connections"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=True, index=True)  # 所有者
    name = Column(String(255), nullable=False)
    db_type = Column(String(20), nullable=False)  # mysql, postgres, mssql, sqlite
    url = Column(Text, nullable=False)
    username = Column(String(255), nullable=True)
    encrypted_password = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="unknown")  # unknown, active, down
    last_checked = Column(DateTime, nullable=True)
    has_write = Column(Boolean, nullable=False, default=False)

    redaction_rules = relationship(
        "RedactionRule", back_populates="connection", cascade="all, delete-orphan"
    )
    role_redactions = relationship(
        "RoleRedaction", back_populates="connection", cascade="all, delete-orphan"
    )
    user_redactions = relationship(
        "UserRedaction", back_populates="connection", cascade="all, delete-orphan"
    )
    global_patterns = relationship(
        "GlobalPatternRule", back_populates="connection", cascade="all, delete-orphan"
    )
    table_metadata = relationship(
        "TableMetadata", back_populates="connection", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Connection(id={self.id}, name={self.name}, db_type={self.db_type})>"
