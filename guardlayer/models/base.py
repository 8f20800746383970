"""
SQLAlchemy基础配置（配置库：连接、规则、元数据、审计）
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    # 配置库统一存储不带时区的UTC时间
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    """生成主键ID"""
    return str(uuid.uuid4())


class TimestampMixin:
    """时间戳混入类"""
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)
