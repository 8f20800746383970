"""
结果脱敏服务
对查询结果应用有效规则集，并统计本次查询实际受影响的规则（写入审计日志）
"""
import json
import re
import secrets
import string
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Set, Tuple

from ..utils.logger import get_logger
from .dto import EffectiveRule, RedactionImpact, RuleType
from .policy_resolver import PatternRule, ResolvedPolicy

logger = get_logger(__name__)

MASK_TOKEN = "■■■"
MASK_CHAR = "*"

SUMMARY_RULE_TYPES = (RuleType.REDACT, RuleType.MASK_EMAIL, RuleType.HASH, RuleType.REMOVE)
GLOBAL_REGEX = "GLOBAL_REGEX"

_BASE36 = string.digits + string.ascii_lowercase


class TokenSource(ABC):
    """HASH 规则使用的随机令牌来源"""

    @abstractmethod
    def next_token(self) -> str:
        pass


class RandomTokenSource(TokenSource):
    """每次生成新的9位base36随机串，同一个值多次查询得到不同结果（不可逆、不可关联）"""

    def __init__(self, length: int = 9):
        self.length = length

    def next_token(self) -> str:
        return "".join(secrets.choice(_BASE36) for _ in range(self.length))


def mask_email(value: str) -> str:
    """
    邮箱脱敏: 保留用户名和域名首字符及域名最后两个字符

    Examples:
        >>> mask_email("ab@example.com")
        'a*@e********om'
        >>> mask_email("not-an-email")
        '■■■'
    """
    parts = value.split("@")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return MASK_TOKEN

    local, domain = parts
    masked_local = local[0] + MASK_CHAR * max(1, len(local) - 1)
    masked_domain = domain[0] + MASK_CHAR * max(1, len(domain) - 3) + domain[-2:]
    return f"{masked_local}@{masked_domain}"


def _mentions(sql: str, name: str) -> bool:
    return re.search(rf"\b{re.escape(name)}\b", sql, re.IGNORECASE) is not None


class RedactionService:
    """结果脱敏服务类"""

    def __init__(self, token_source: Optional[TokenSource] = None):
        """
        Args:
            token_source: HASH 令牌来源，默认使用随机来源
        """
        self.token_source = token_source or RandomTokenSource()

    def hash_token(self) -> str:
        return f"[HASH_{self.token_source.next_token()}]"

    def apply_rule(self, value: Any, rule: Optional[EffectiveRule]) -> Any:
        """
        对单个值应用列规则

        MASK_EMAIL 只处理字符串；HASH 每次生成新令牌；
        REDACT、REMOVE、EXPOSE 及无规则时一律替换为掩码
        """
        rule_type = rule.rule_type if rule else None

        if rule_type == RuleType.MASK_EMAIL and isinstance(value, str):
            return mask_email(value)
        if rule_type == RuleType.HASH:
            return self.hash_token()
        return MASK_TOKEN

    def apply_patterns(self, value: Any, pattern_rules: Tuple[PatternRule, ...]) -> Any:
        """字符串值命中第一条全局正则规则时整体替换"""
        if not isinstance(value, str):
            return value
        for rule in pattern_rules:
            if rule.regex.search(value):
                return rule.replacement or MASK_TOKEN
        return value

    def redact_rows(
        self,
        rows: List[Dict[str, Any]],
        policy: ResolvedPolicy
    ) -> Tuple[List[Dict[str, Any]], Set[str], Set[str]]:
        """
        对结果行脱敏

        每个结果列只按规则集中第一个列出它的表处理一次；值为None的列同样处理。

        Returns:
            (脱敏后的行, 实际做了邮箱掩码的列, 实际做了HASH的列)
        """
        masked: Set[str] = set()
        hashed: Set[str] = set()
        redacted_rows = []

        for row in rows:
            out = dict(row)
            keys = {key.lower(): key for key in out if isinstance(key, str)}
            handled: Set[str] = set()

            for table_name, columns in policy.redacted_columns.items():
                for column_name in columns:
                    key = keys.get(column_name.lower())
                    if key is None or key in handled:
                        continue
                    handled.add(key)

                    rule = policy.rule_for(table_name, column_name)
                    value = out[key]
                    out[key] = self.apply_rule(value, rule)

                    if rule and rule.rule_type == RuleType.MASK_EMAIL and isinstance(value, str):
                        masked.add(f"{table_name}.{column_name}")
                    elif rule and rule.rule_type == RuleType.HASH:
                        hashed.add(f"{table_name}.{column_name}")

            if policy.pattern_rules:
                for key, value in out.items():
                    out[key] = self.apply_patterns(value, policy.pattern_rules)

            redacted_rows.append(out)

        return redacted_rows, masked, hashed

    def compute_impact(
        self,
        policy: ResolvedPolicy,
        sql: str,
        redacted_rows: List[Dict[str, Any]],
        masked: Set[str],
        hashed: Set[str]
    ) -> RedactionImpact:
        """
        统计本次查询实际受影响的规则

        规则"生效"的条件: 列名以整词出现在SQL中（显式使用），或者其所在表被SQL引用
        且该列已从提供给LLM的表结构中移除（因隐藏而间接生效）。

        Args:
            policy: 有效规则集
            sql: 实际执行的SQL
            redacted_rows: 脱敏后的全部结果行
            masked: 运行时做了邮箱掩码的列
            hashed: 运行时做了HASH的列

        Returns:
            RedactionImpact
        """
        tables_in_sql = [t for t in policy.filtered_schema if _mentions(sql, t)]

        removed_from_schema = [
            f"{table_name}.{column_name}"
            for table_name in policy.snapshot
            for column_name in policy.redacted_columns.get(table_name, ())
        ]
        removed_set = set(removed_from_schema)

        applied = [
            rule for rule in policy.effective_rules
            if _mentions(sql, rule.column_name)
            or (
                rule.table_name in tables_in_sql
                and f"{rule.table_name}.{rule.column_name}" in removed_set
            )
        ]

        rule_summary = {
            rule_type.value: sum(1 for rule in applied if rule.rule_type == rule_type)
            for rule_type in SUMMARY_RULE_TYPES
        }
        serialized = json.dumps(redacted_rows, ensure_ascii=False, default=str)
        rule_summary[GLOBAL_REGEX] = sum(
            1 for rule in policy.pattern_rules if rule.regex.search(serialized)
        )

        # 只按列名匹配：orders.email 规则生效时，customers.email 也会计为已隐藏
        actually_removed = [
            column for column in removed_from_schema
            if any(column.endswith(f".{rule.column_name}") for rule in applied)
        ]

        # 生效规则中处于最高优先级的 MASK_EMAIL/HASH 列，即使未出现在结果里也计入
        authoritative = [
            rule for rule in applied
            if policy.rule_for(rule.table_name, rule.column_name) is rule
        ]
        masked_columns = sorted(masked) + [
            f"{r.table_name}.{r.column_name}" for r in authoritative
            if r.rule_type == RuleType.MASK_EMAIL
        ]
        hash_applied = sorted(hashed) + [
            f"{r.table_name}.{r.column_name}" for r in authoritative
            if r.rule_type == RuleType.HASH
        ]

        return RedactionImpact(
            hidden_columns=actually_removed,
            masked_columns=list(dict.fromkeys(masked_columns)),
            hash_applied=list(dict.fromkeys(hash_applied)),
            removed_from_schema=list(actually_removed),
            rule_summary=rule_summary,
            redactions_applied=bool(applied),
        )

    def redact(
        self,
        rows: List[Dict[str, Any]],
        policy: ResolvedPolicy,
        sql: str
    ) -> Tuple[List[Dict[str, Any]], RedactionImpact]:
        """
        脱敏结果行并统计影响

        Args:
            rows: 目标库返回的原始结果行
            policy: 有效规则集
            sql: 实际执行的SQL

        Returns:
            (脱敏后的行, RedactionImpact)
        """
        redacted_rows, masked, hashed = self.redact_rows(rows, policy)
        impact = self.compute_impact(policy, sql, redacted_rows, masked, hashed)

        logger.info(
            f"结果脱敏完成: rows={len(redacted_rows)}, "
            f"masked={impact.masked_columns}, hashed={impact.hash_applied}, "
            f"summary={impact.rule_summary}"
        )
        return redacted_rows, impact
