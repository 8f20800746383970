"""
配置库模型包
"""
from .base import Base
from .connection import Connection
from .redaction import RedactionRule, RoleRedaction, UserRedaction, GlobalPatternRule
from .table_metadata import TableMetadata, ColumnMetadata
from .audit_log import AuditLog

__all__ = [
    "Base",
    "Connection",
    "RedactionRule",
    "RoleRedaction",
    "UserRedaction",
    "GlobalPatternRule",
    "TableMetadata",
    "ColumnMetadata",
    "AuditLog",
]
