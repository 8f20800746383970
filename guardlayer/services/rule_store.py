"""
规则存储服务
封装配置库中连接、脱敏规则、元数据的读写；返回的ORM对象在会话关闭后仍可读取
"""
import json
import re
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func

from ..database import Database, get_database
from ..models import (
    AuditLog,
    ColumnMetadata,
    Connection,
    GlobalPatternRule,
    RedactionRule,
    RoleRedaction,
    TableMetadata,
    UserRedaction,
)
from ..models.base import _utcnow, new_id
from ..utils.logger import get_logger
from .dto import ColumnNote, ConnectionCheckResult, RuleType, TableNote
from .encryption_service import EncryptionService, get_encryption_service
from .errors import ConnectionNotFound

logger = get_logger(__name__)


def _load_tags(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    try:
        tags = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"表元数据标签不是合法JSON，已忽略: {raw[:100]}")
        return []
    return [str(t) for t in tags] if isinstance(tags, list) else []


class RuleStore:
    """配置库读写服务"""

    def __init__(
        self,
        database: Optional[Database] = None,
        encryption_service: Optional[EncryptionService] = None
    ):
        self.db = database or get_database()
        self.encryption_service = encryption_service or get_encryption_service()

    # ============ 连接 ============

    def get_connection(self, connection_id: str) -> Connection:
        """
        获取连接配置

        Raises:
            ConnectionNotFound: 连接不存在
        """
        with self.db.get_session() as session:
            connection = session.query(Connection).filter(Connection.id == connection_id).first()
            if connection is None:
                raise ConnectionNotFound(connection_id)
            return connection

    def list_connections(self, user_id: Optional[str] = None) -> List[Connection]:
        """列出连接；指定 user_id 时只返回该用户拥有的连接"""
        with self.db.get_session() as session:
            query = session.query(Connection)
            if user_id:
                query = query.filter(Connection.user_id == user_id)
            return query.order_by(Connection.created_at.desc()).all()

    def create_connection(
        self,
        name: str,
        db_type: str,
        url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> Connection:
        """保存新连接（密码加密存储）"""
        connection = Connection(
            id=new_id(),
            user_id=user_id,
            name=name,
            db_type=db_type,
            url=url,
            username=username,
            encrypted_password=self.encryption_service.encrypt(password) or None,
            status="unknown",
            has_write=False,
        )
        with self.db.get_session() as session:
            session.add(connection)
        logger.info(f"连接创建成功: id={connection.id}, name={name}, db_type={db_type}")
        return connection

    def update_connection_status(
        self,
        connection_id: str,
        result: ConnectionCheckResult
    ) -> Connection:
        """写入健康检查结果"""
        with self.db.get_session() as session:
            connection = session.query(Connection).filter(Connection.id == connection_id).first()
            if connection is None:
                raise ConnectionNotFound(connection_id)
            connection.status = result.status
            connection.has_write = result.has_write
            connection.last_checked = _utcnow()
            return connection

    def delete_connection(self, connection_id: str) -> None:
        """
        删除连接，级联删除其规则和元数据；审计日志保留但 connection_id 置空

        Raises:
            ConnectionNotFound: 连接不存在
        """
        with self.db.get_session() as session:
            connection = session.query(Connection).filter(Connection.id == connection_id).first()
            if connection is None:
                raise ConnectionNotFound(connection_id)
            session.query(AuditLog).filter(AuditLog.connection_id == connection_id).update(
                {AuditLog.connection_id: None}, synchronize_session=False
            )
            session.delete(connection)
        logger.info(f"连接已删除: id={connection_id}")

    # ============ 列级规则 ============

    def get_column_rules(self, connection_id: str) -> List[RedactionRule]:
        """获取连接的全部列级规则（按创建顺序）"""
        with self.db.get_session() as session:
            return (
                session.query(RedactionRule)
                .filter(RedactionRule.connection_id == connection_id)
                .order_by(RedactionRule.created_at, RedactionRule.id)
                .all()
            )

    def set_column_rule(
        self,
        connection_id: str,
        table_name: str,
        column_name: str,
        rule_type: RuleType,
        replacement: Optional[str] = None,
        pattern: Optional[str] = None
    ) -> Optional[RedactionRule]:
        """
        写入列级规则；同一列已有规则时覆盖（表名、列名不区分大小写，保留最后一次写入的写法）

        EXPOSE 不落库，而是删除该列已有规则

        Returns:
            写入的规则；EXPOSE 时返回None
        """
        if rule_type == RuleType.EXPOSE:
            removed = self.remove_column_rule(connection_id, table_name, column_name)
            logger.info(f"EXPOSE 删除列规则: {table_name}.{column_name}, removed={removed}")
            return None

        with self.db.get_session() as session:
            rule = (
                session.query(RedactionRule)
                .filter(
                    RedactionRule.connection_id == connection_id,
                    func.lower(RedactionRule.table_name) == table_name.lower(),
                    func.lower(RedactionRule.column_name) == column_name.lower(),
                )
                .first()
            )
            if rule is None:
                rule = RedactionRule(id=new_id(), connection_id=connection_id)
                session.add(rule)
            rule.table_name = table_name
            rule.column_name = column_name
            rule.rule_type = rule_type.value
            rule.replacement = replacement
            rule.pattern = pattern
            return rule

    def remove_column_rule(self, connection_id: str, table_name: str, column_name: str) -> int:
        """删除某列的规则（不区分大小写），返回删除条数"""
        with self.db.get_session() as session:
            return (
                session.query(RedactionRule)
                .filter(
                    RedactionRule.connection_id == connection_id,
                    func.lower(RedactionRule.table_name) == table_name.lower(),
                    func.lower(RedactionRule.column_name) == column_name.lower(),
                )
                .delete(synchronize_session=False)
            )

    def delete_column_rule(self, rule_id: str) -> Optional[RedactionRule]:
        """按ID删除列级规则，返回被删除的规则（不存在时返回None）"""
        with self.db.get_session() as session:
            rule = session.query(RedactionRule).filter(RedactionRule.id == rule_id).first()
            if rule is not None:
                session.delete(rule)
            return rule

    def clear_column_rules(self, connection_id: Optional[str] = None) -> int:
        """清空列级规则；未指定连接时清空全部"""
        with self.db.get_session() as session:
            query = session.query(RedactionRule)
            if connection_id:
                query = query.filter(RedactionRule.connection_id == connection_id)
            return query.delete(synchronize_session=False)

    # ============ 角色/用户规则集 ============

    def get_role_redaction_sets(
        self,
        connection_id: str,
        role_ids: Sequence[str]
    ) -> List[RoleRedaction]:
        """获取指定角色在该连接上的规则集，按 role_ids 的顺序返回"""
        if not role_ids:
            return []
        with self.db.get_session() as session:
            sets = (
                session.query(RoleRedaction)
                .filter(
                    RoleRedaction.connection_id == connection_id,
                    RoleRedaction.role_id.in_(list(role_ids)),
                )
                .all()
            )
        order = {role_id: index for index, role_id in enumerate(role_ids)}
        return sorted(sets, key=lambda s: order[s.role_id])

    def list_role_redactions(self, connection_id: str) -> List[RoleRedaction]:
        with self.db.get_session() as session:
            return (
                session.query(RoleRedaction)
                .filter(RoleRedaction.connection_id == connection_id)
                .order_by(RoleRedaction.created_at)
                .all()
            )

    def upsert_role_redaction(
        self,
        role_id: str,
        connection_id: str,
        rules: Dict[str, Any],
        role_name: Optional[str] = None
    ) -> RoleRedaction:
        """写入角色规则集（同一角色、同一连接只保留一份）"""
        with self.db.get_session() as session:
            record = (
                session.query(RoleRedaction)
                .filter(
                    RoleRedaction.role_id == role_id,
                    RoleRedaction.connection_id == connection_id,
                )
                .first()
            )
            if record is None:
                record = RoleRedaction(id=new_id(), role_id=role_id, connection_id=connection_id)
                session.add(record)
            record.role_name = role_name
            record.rules = json.dumps(rules, ensure_ascii=False)
            return record

    def delete_role_redaction(self, record_id: str) -> bool:
        with self.db.get_session() as session:
            deleted = session.query(RoleRedaction).filter(RoleRedaction.id == record_id).delete()
            return deleted > 0

    def get_user_redaction_set(self, connection_id: str, user_id: Optional[str]) -> Optional[UserRedaction]:
        """获取用户在该连接上的规则集"""
        if not user_id:
            return None
        with self.db.get_session() as session:
            return (
                session.query(UserRedaction)
                .filter(
                    UserRedaction.connection_id == connection_id,
                    UserRedaction.user_id == user_id,
                )
                .first()
            )

    def list_user_redactions(self, connection_id: str) -> List[UserRedaction]:
        with self.db.get_session() as session:
            return (
                session.query(UserRedaction)
                .filter(UserRedaction.connection_id == connection_id)
                .order_by(UserRedaction.created_at)
                .all()
            )

    def upsert_user_redaction(
        self,
        user_id: str,
        connection_id: str,
        rules: List[Dict[str, Any]]
    ) -> UserRedaction:
        """写入用户规则集（同一用户、同一连接只保留一份）"""
        with self.db.get_session() as session:
            record = (
                session.query(UserRedaction)
                .filter(
                    UserRedaction.user_id == user_id,
                    UserRedaction.connection_id == connection_id,
                )
                .first()
            )
            if record is None:
                record = UserRedaction(id=new_id(), user_id=user_id, connection_id=connection_id)
                session.add(record)
            record.rules = json.dumps(rules, ensure_ascii=False)
            return record

    def delete_user_redaction(self, record_id: str) -> bool:
        with self.db.get_session() as session:
            deleted = session.query(UserRedaction).filter(UserRedaction.id == record_id).delete()
            return deleted > 0

    # ============ 全局正则规则 ============

    def get_global_pattern_rules(self, connection_id: str) -> List[GlobalPatternRule]:
        """获取作用于该连接的启用规则（连接级 + 全局）"""
        with self.db.get_session() as session:
            return (
                session.query(GlobalPatternRule)
                .filter(
                    GlobalPatternRule.is_active.is_(True),
                    (GlobalPatternRule.connection_id == connection_id)
                    | (GlobalPatternRule.connection_id.is_(None)),
                )
                .order_by(GlobalPatternRule.created_at, GlobalPatternRule.id)
                .all()
            )

    def list_global_pattern_rules(self, connection_id: Optional[str] = None) -> List[GlobalPatternRule]:
        with self.db.get_session() as session:
            query = session.query(GlobalPatternRule)
            if connection_id:
                query = query.filter(GlobalPatternRule.connection_id == connection_id)
            return query.order_by(GlobalPatternRule.created_at).all()

    def create_global_pattern_rule(
        self,
        name: str,
        pattern: str,
        replacement: Optional[str] = None,
        role: Optional[str] = None,
        connection_id: Optional[str] = None,
        is_active: bool = True
    ) -> GlobalPatternRule:
        """
        创建全局正则规则

        Raises:
            ValueError: 正则表达式无效
        """
        try:
            re.compile(pattern)
        except re.error as e:
            raise ValueError(f"Invalid regex pattern: {e}") from e

        rule = GlobalPatternRule(
            id=new_id(),
            name=name,
            pattern=pattern,
            replacement=replacement or "***REDACTED***",
            role=role,
            connection_id=connection_id,
            is_active=is_active,
        )
        with self.db.get_session() as session:
            session.add(rule)
        return rule

    def delete_global_pattern_rule(self, rule_id: str) -> bool:
        with self.db.get_session() as session:
            deleted = session.query(GlobalPatternRule).filter(GlobalPatternRule.id == rule_id).delete()
            return deleted > 0

    # ============ 表/列元数据 ============

    def get_table_metadata(self, connection_id: str) -> List[TableNote]:
        """获取连接的表、列说明"""
        with self.db.get_session() as session:
            tables = (
                session.query(TableMetadata)
                .filter(TableMetadata.connection_id == connection_id)
                .order_by(TableMetadata.table_name)
                .all()
            )
            return [
                TableNote(
                    table_name=t.table_name,
                    description=t.description,
                    notes=t.notes,
                    tags=_load_tags(t.tags),
                    columns=[
                        ColumnNote(
                            column_name=c.column_name,
                            description=c.description,
                            example=c.example,
                            importance=c.importance,
                        )
                        for c in sorted(t.columns, key=lambda c: c.column_name)
                    ],
                )
                for t in tables
            ]

    def _get_or_create_table_metadata(self, session, connection_id: str, table_name: str) -> TableMetadata:
        table = (
            session.query(TableMetadata)
            .filter(
                TableMetadata.connection_id == connection_id,
                TableMetadata.table_name == table_name,
            )
            .first()
        )
        if table is None:
            table = TableMetadata(id=new_id(), connection_id=connection_id, table_name=table_name)
            session.add(table)
            session.flush()
        return table

    def upsert_table_metadata(
        self,
        connection_id: str,
        table_name: str,
        description: Optional[str] = None,
        notes: Optional[str] = None,
        tags: Optional[List[str]] = None
    ) -> TableNote:
        with self.db.get_session() as session:
            table = self._get_or_create_table_metadata(session, connection_id, table_name)
            table.description = description
            table.notes = notes
            table.tags = json.dumps(tags or [], ensure_ascii=False)
        return TableNote(table_name=table_name, description=description, notes=notes, tags=tags or [])

    def upsert_column_metadata(
        self,
        connection_id: str,
        table_name: str,
        column_name: str,
        description: Optional[str] = None,
        example: Optional[str] = None,
        importance: Optional[int] = None
    ) -> ColumnNote:
        with self.db.get_session() as session:
            table = self._get_or_create_table_metadata(session, connection_id, table_name)
            column = (
                session.query(ColumnMetadata)
                .filter(
                    ColumnMetadata.table_metadata_id == table.id,
                    ColumnMetadata.column_name == column_name,
                )
                .first()
            )
            if column is None:
                column = ColumnMetadata(id=new_id(), table_metadata_id=table.id, column_name=column_name)
                session.add(column)
            column.description = description
            column.example = example
            column.importance = importance
        return ColumnNote(
            column_name=column_name,
            description=description,
            example=example,
            importance=importance,
        )
