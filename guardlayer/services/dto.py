"""
数据传输对象 (Data Transfer Objects)
"""
from enum import Enum, IntEnum
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RuleType(str, Enum):
    """脱敏规则类型"""
    EXPOSE = "EXPOSE"
    REDACT = "REDACT"
    MASK_EMAIL = "MASK_EMAIL"
    REMOVE = "REMOVE"
    HASH = "HASH"


class RuleSource(IntEnum):
    """规则来源，数值越小优先级越高（同一列取第一条匹配规则）"""
    COLUMN = 0
    ROLE = 1
    USER = 2


class DbType(str, Enum):
    """支持的目标数据库类型"""
    MYSQL = "mysql"
    POSTGRES = "postgres"
    MSSQL = "mssql"
    SQLITE = "sqlite"


class ColumnInfo(BaseModel):
    """表结构中的一列"""
    name: str
    type: str


# 表名 -> 有序列信息
SchemaSnapshot = Dict[str, List[ColumnInfo]]


class EffectiveRule(BaseModel):
    """合并后的单条列脱敏规则"""
    model_config = ConfigDict(frozen=True)

    table_name: str
    column_name: str
    rule_type: RuleType = RuleType.REDACT
    replacement: Optional[str] = None
    pattern: Optional[str] = None
    source: RuleSource
    role: Optional[str] = None


class ColumnRuleBody(BaseModel):
    """角色规则集对象形式中的列规则: {"email": {"ruleType": "MASK_EMAIL"}}"""
    model_config = ConfigDict(populate_by_name=True)

    rule_type: RuleType = Field(RuleType.REDACT, alias="ruleType")
    replacement: Optional[str] = None
    pattern: Optional[str] = None

    @field_validator("rule_type", mode="before")
    @classmethod
    def _default_rule_type(cls, value):
        # "ruleType": null 与缺省一致
        return RuleType.REDACT if value is None else value


class ColumnRuleEntry(ColumnRuleBody):
    """角色规则集数组形式中的一项: [{"columnName": "email", "ruleType": "HASH"}]"""
    column_name: str = Field(..., alias="columnName", min_length=1)


class UserRuleEntry(ColumnRuleEntry):
    """用户规则集中的一项，自带表名"""
    table_name: str = Field(..., alias="tableName", min_length=1)


class ColumnMapShape(BaseModel):
    """角色规则文档中对象形式的表条目"""
    kind: str = "column_map"
    table_name: str
    columns: Dict[str, ColumnRuleBody]


class ArrayShape(BaseModel):
    """角色规则文档中数组形式的表条目"""
    kind: str = "array"
    table_name: str
    entries: List[ColumnRuleEntry]


class RedactionImpact(BaseModel):
    """脱敏影响记录（写入审计日志）"""
    model_config = ConfigDict(populate_by_name=True)

    hidden_columns: List[str] = Field(default_factory=list, alias="hiddenColumns")
    masked_columns: List[str] = Field(default_factory=list, alias="maskedColumns")
    hash_applied: List[str] = Field(default_factory=list, alias="hashApplied")
    removed_from_schema: List[str] = Field(default_factory=list, alias="removedFromSchema")
    rule_summary: Dict[str, int] = Field(default_factory=dict, alias="ruleSummary")
    redactions_applied: bool = Field(False, exclude=True)

    def to_audit_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class QueryAnswer(BaseModel):
    """问答流水线成功结果"""
    sql: str
    summary: str
    row_count: int
    rows: List[Dict[str, Any]]
    impact: RedactionImpact
    attempts: int = 1


class ManualQueryResult(BaseModel):
    """手动SQL执行结果"""
    rows: List[Dict[str, Any]]
    row_count: int
    execution_time_ms: int
    impact: RedactionImpact


class ColumnNote(BaseModel):
    """列说明"""
    column_name: str
    description: Optional[str] = None
    example: Optional[str] = None
    importance: Optional[int] = None


class TableNote(BaseModel):
    """表说明（外部元数据）"""
    table_name: str
    description: Optional[str] = None
    notes: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    columns: List[ColumnNote] = Field(default_factory=list)


class ConnectionCheckResult(BaseModel):
    """连接健康检查结果"""
    status: str  # active / down
    has_write: bool = False
    error: Optional[str] = None
