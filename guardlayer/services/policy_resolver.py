"""
脱敏策略解析
合并列级规则、角色规则集、用户规则集和全局正则规则，得到某个连接 + 请求身份下的有效规则集

合并顺序为 [列级, 角色, 用户]，同一 (表, 列) 取第一条匹配的规则。
角色/用户规则集是存储在配置库中的JSON文档，在这里显式解码，格式不正确时直接报错。
"""
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from ..models import GlobalPatternRule, RedactionRule, RoleRedaction, UserRedaction
from ..models.connection import Connection
from ..utils.logger import get_logger
from .dto import (
    ArrayShape,
    ColumnMapShape,
    ColumnRuleBody,
    ColumnRuleEntry,
    EffectiveRule,
    RuleSource,
    RuleType,
    SchemaSnapshot,
    UserRuleEntry,
)
from .errors import RedactionPolicyError
from .rule_store import RuleStore
from .schema_service import SchemaService

logger = get_logger(__name__)

RoleTableShape = Union[ColumnMapShape, ArrayShape]


@dataclass(frozen=True)
class PatternRule:
    """编译后的全局正则规则（作用于值）"""
    name: str
    pattern: str
    regex: re.Pattern
    replacement: Optional[str] = None
    role: Optional[str] = None


@dataclass(frozen=True)
class ResolvedPolicy:
    """
    有效脱敏规则集

    Attributes:
        snapshot: 原始表结构快照
        filtered_schema: 去掉被脱敏列后的表结构（提供给LLM）
        effective_rules: 按优先级排列的全部规则
        redacted_columns: 表名 -> 被脱敏列名（保持首次出现顺序）
        pattern_rules: 全局正则规则
    """
    snapshot: SchemaSnapshot
    filtered_schema: SchemaSnapshot
    effective_rules: Tuple[EffectiveRule, ...]
    redacted_columns: Dict[str, List[str]]
    pattern_rules: Tuple[PatternRule, ...] = ()
    _authoritative: Dict[Tuple[str, str], EffectiveRule] = field(
        default_factory=dict, repr=False, compare=False
    )

    def rule_for(self, table_name: str, column_name: str) -> Optional[EffectiveRule]:
        """返回 (表, 列) 的生效规则，即合并顺序中第一条匹配的规则"""
        return self._authoritative.get((table_name, column_name))

    def available_tables(self) -> List[str]:
        return list(self.filtered_schema.keys())


def normalize_table_name(name: str) -> str:
    """去掉schema前缀: 'public.orders' -> 'orders'"""
    return name.rsplit(".", 1)[-1].strip()


def _load_json(raw: Any, what: str) -> Any:
    if isinstance(raw, (str, bytes)):
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise RedactionPolicyError(f"{what} is not valid JSON: {e}") from e
    return raw


def decode_role_document(document: Any) -> List[RoleTableShape]:
    """
    解码角色规则集文档

    支持两种表条目格式:
        {"orders": {"email": {"ruleType": "MASK_EMAIL"}}}
        {"public.orders": [{"columnName": "email", "ruleType": "HASH"}]}

    缺少 ruleType 时按 REDACT 处理。

    Args:
        document: JSON文本或已解析的对象

    Returns:
        表条目列表（顺序与文档一致）

    Raises:
        RedactionPolicyError: 文档格式不正确
    """
    document = _load_json(document, "Role redaction document")
    if not isinstance(document, dict):
        raise RedactionPolicyError("Role redaction document must be an object keyed by table name")

    shapes: List[RoleTableShape] = []
    for raw_table, body in document.items():
        table_name = normalize_table_name(str(raw_table))
        if not table_name:
            raise RedactionPolicyError(f"Invalid table name in role redaction document: {raw_table!r}")

        try:
            if isinstance(body, dict):
                columns: Dict[str, ColumnRuleBody] = {}
                for column_name, rule in body.items():
                    if not column_name or not isinstance(rule, dict):
                        raise RedactionPolicyError(
                            f"Invalid rule for {raw_table}.{column_name}: expected an object"
                        )
                    columns[column_name] = ColumnRuleBody.model_validate(rule)
                shapes.append(ColumnMapShape(table_name=table_name, columns=columns))
            elif isinstance(body, list):
                entries = [ColumnRuleEntry.model_validate(entry) for entry in body]
                shapes.append(ArrayShape(table_name=table_name, entries=entries))
            else:
                raise RedactionPolicyError(
                    f"Invalid rules for table {raw_table}: expected an object or an array"
                )
        except ValidationError as e:
            raise RedactionPolicyError(f"Invalid rules for table {raw_table}: {e}") from e

    return shapes


def decode_user_document(document: Any) -> List[UserRuleEntry]:
    """
    解码用户规则集文档（规则数组，每项自带 tableName）

    Raises:
        RedactionPolicyError: 文档格式不正确
    """
    document = _load_json(document, "User redaction document")
    if not isinstance(document, list):
        raise RedactionPolicyError("User redaction document must be an array of rules")

    try:
        entries = [UserRuleEntry.model_validate(entry) for entry in document]
    except ValidationError as e:
        raise RedactionPolicyError(f"Invalid user redaction rule: {e}") from e

    return [
        entry.model_copy(update={"table_name": normalize_table_name(entry.table_name)})
        for entry in entries
    ]


def _column_rules(rules: Iterable[RedactionRule]) -> List[EffectiveRule]:
    effective = []
    for rule in rules:
        try:
            rule_type = RuleType(rule.rule_type)
        except ValueError as e:
            raise RedactionPolicyError(f"Unknown rule type stored for {rule.table_name}.{rule.column_name}") from e
        effective.append(EffectiveRule(
            table_name=rule.table_name,
            column_name=rule.column_name,
            rule_type=rule_type,
            replacement=rule.replacement,
            pattern=rule.pattern,
            source=RuleSource.COLUMN,
        ))
    return effective


def _role_rules(role_sets: Iterable[RoleRedaction]) -> List[EffectiveRule]:
    effective = []
    for record in role_sets:
        role = record.role_name or record.role_id
        for shape in decode_role_document(record.rules):
            if isinstance(shape, ColumnMapShape):
                items = [(name, body) for name, body in shape.columns.items()]
            else:
                items = [(entry.column_name, entry) for entry in shape.entries]
            for column_name, body in items:
                effective.append(EffectiveRule(
                    table_name=shape.table_name,
                    column_name=column_name,
                    rule_type=body.rule_type,
                    replacement=body.replacement,
                    pattern=body.pattern,
                    source=RuleSource.ROLE,
                    role=role,
                ))
    return effective


def _user_rules(user_set: Optional[UserRedaction]) -> List[EffectiveRule]:
    if user_set is None:
        return []
    return [
        EffectiveRule(
            table_name=entry.table_name,
            column_name=entry.column_name,
            rule_type=entry.rule_type,
            replacement=entry.replacement,
            pattern=entry.pattern,
            source=RuleSource.USER,
        )
        for entry in decode_user_document(user_set.rules)
    ]


def compile_pattern_rules(rules: Iterable[GlobalPatternRule]) -> Tuple[PatternRule, ...]:
    """编译启用的全局正则规则（不区分大小写）"""
    compiled = []
    for rule in rules:
        if not rule.is_active:
            continue
        try:
            regex = re.compile(rule.pattern, re.IGNORECASE)
        except re.error as e:
            raise RedactionPolicyError(f"Invalid global pattern {rule.name!r}: {e}") from e
        compiled.append(PatternRule(
            name=rule.name,
            pattern=rule.pattern,
            regex=regex,
            replacement=rule.replacement,
            role=rule.role,
        ))
    return tuple(compiled)


def _match_snapshot_case(rules: List[EffectiveRule], snapshot: SchemaSnapshot) -> List[EffectiveRule]:
    """规则中的表名、列名按快照中的实际大小写改写；快照中不存在的名称保持原样"""
    tables = {name.lower(): name for name in snapshot}
    matched = []
    for rule in rules:
        table_name = tables.get(rule.table_name.lower(), rule.table_name)
        columns = {c.name.lower(): c.name for c in snapshot.get(table_name, ())}
        column_name = columns.get(rule.column_name.lower(), rule.column_name)
        if (table_name, column_name) != (rule.table_name, rule.column_name):
            rule = rule.model_copy(update={"table_name": table_name, "column_name": column_name})
        matched.append(rule)
    return matched


def build_policy(
    snapshot: SchemaSnapshot,
    column_rules: Sequence[RedactionRule],
    role_sets: Sequence[RoleRedaction],
    user_set: Optional[UserRedaction],
    pattern_rules: Sequence[GlobalPatternRule]
) -> ResolvedPolicy:
    """
    由四类规则来源和表结构快照计算有效规则集（纯函数，相同输入得到相同输出）

    Raises:
        RedactionPolicyError: 角色/用户规则文档格式不正确，或存储了无效的规则
    """
    # TODO: 同一列同时存在列级规则与用户规则时，列级规则生效（用户规则优先级最低），
    # 与"越具体越优先"的直觉相反，需产品确认后再决定是否调整 RuleSource 的顺序
    effective = sorted(
        _match_snapshot_case(
            _column_rules(column_rules) + _role_rules(role_sets) + _user_rules(user_set),
            snapshot
        ),
        key=lambda rule: rule.source
    )

    redacted_columns: Dict[str, List[str]] = {}
    authoritative: Dict[Tuple[str, str], EffectiveRule] = {}
    for rule in effective:
        columns = redacted_columns.setdefault(rule.table_name, [])
        if rule.column_name not in columns:
            columns.append(rule.column_name)
        authoritative.setdefault((rule.table_name, rule.column_name), rule)

    filtered_schema: SchemaSnapshot = {}
    for table_name, columns in snapshot.items():
        hidden = set(redacted_columns.get(table_name, ()))
        filtered_schema[table_name] = [c for c in columns if c.name not in hidden]

    return ResolvedPolicy(
        snapshot=snapshot,
        filtered_schema=filtered_schema,
        effective_rules=tuple(effective),
        redacted_columns=redacted_columns,
        pattern_rules=compile_pattern_rules(pattern_rules),
        _authoritative=authoritative,
    )


class PolicyResolver:
    """脱敏策略解析器"""

    def __init__(self, store: RuleStore, schema_service: SchemaService):
        self.store = store
        self.schema_service = schema_service

    async def resolve(
        self,
        connection: Connection,
        user_id: Optional[str],
        role_ids: Sequence[str]
    ) -> ResolvedPolicy:
        """
        解析连接 + 请求身份下的有效规则集

        Args:
            connection: 目标连接
            user_id: 请求用户ID
            role_ids: 请求用户的角色ID列表

        Returns:
            ResolvedPolicy

        Raises:
            IntrospectionFailed: 读取表结构失败
            RedactionPolicyError: 规则文档格式不正确
        """
        snapshot = await self.schema_service.get_schema(connection)

        policy = build_policy(
            snapshot,
            self.store.get_column_rules(connection.id),
            self.store.get_role_redaction_sets(connection.id, role_ids),
            self.store.get_user_redaction_set(connection.id, user_id),
            self.store.get_global_pattern_rules(connection.id),
        )

        logger.info(
            f"脱敏策略解析完成: connection_id={connection.id}, user_id={user_id}, "
            f"rules={len(policy.effective_rules)}, patterns={len(policy.pattern_rules)}"
        )
        logger.debug(f"被脱敏的列: {policy.redacted_columns}")
        return policy
