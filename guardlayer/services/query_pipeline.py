"""
问答查询流水线
自然语言问题 -> 生成SQL -> 只读校验 -> 执行 -> 失败时带着错误信息重新生成（最多3次）-> 结果脱敏 -> 总结

每一步是接收 PipelineState、返回新 PipelineState 的函数，状态不可变。
未通过只读校验的SQL永远不会被执行。
"""
import time
from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..models.connection import Connection
from ..utils.logger import get_logger, log_sql_error
from .audit_service import AuditService
from .database_adapters import DatabaseAdapterFactory
from .database_connector import DatabaseConnector
from .dto import ManualQueryResult, QueryAnswer
from .errors import GenerationExhausted, InvalidQuery
from .llm_service import LLMService
from .policy_resolver import PolicyResolver
from .prompt_builder import build_correction, build_system_prompt, build_user_prompt
from .redaction_service import RedactionService
from .rule_store import RuleStore
from .sql_validator import validate_select_only

logger = get_logger(__name__)

MAX_ATTEMPTS = 3
ROW_LIMIT = 100
SUMMARY_FALLBACK = "Query executed successfully."


class Phase(str, Enum):
    """流水线阶段"""
    DRAFT = "draft"
    CANDIDATE = "candidate"
    VALIDATED = "validated"
    REJECTED = "rejected"
    EXECUTED = "executed"
    EXECUTION_FAILED = "execution_failed"


@dataclass(frozen=True)
class PipelineState:
    """单次问答的流水线状态"""
    attempt: int = 1
    phase: Phase = Phase.DRAFT
    last_sql: str = ""
    last_error: str = ""


def draft_prompt(state: PipelineState, base_prompt: str) -> str:
    """Draft: 重试时把上一次的错误附加到用户提示后"""
    if state.attempt > 1 and state.last_error:
        return f"{base_prompt}\n\n{build_correction(state.last_error)}"
    return base_prompt


def to_candidate(state: PipelineState, sql: str) -> PipelineState:
    """Draft -> Candidate"""
    return replace(state, phase=Phase.CANDIDATE, last_sql=sql)


def validate_candidate(state: PipelineState) -> PipelineState:
    """Candidate -> Validated | Rejected"""
    try:
        validate_select_only(state.last_sql)
    except InvalidQuery as e:
        logger.warning(
            f"候选SQL未通过只读校验 (尝试 {state.attempt}/{MAX_ATTEMPTS}): "
            f"reason={e.reason}, sql={state.last_sql[:200]}"
        )
        return replace(state, phase=Phase.REJECTED, last_error=str(e))
    return replace(state, phase=Phase.VALIDATED)


def to_executed(state: PipelineState) -> PipelineState:
    """Validated -> Executed"""
    return replace(state, phase=Phase.EXECUTED, last_error="")


def to_execution_failed(state: PipelineState, error: Exception) -> PipelineState:
    """Validated -> ExecutionFailed"""
    return replace(state, phase=Phase.EXECUTION_FAILED, last_error=str(error))


def next_attempt(state: PipelineState) -> PipelineState:
    """Rejected | ExecutionFailed -> Draft"""
    return replace(state, attempt=state.attempt + 1, phase=Phase.DRAFT)


class QueryPipeline:
    """问答查询流水线"""

    def __init__(
        self,
        resolver: PolicyResolver,
        store: RuleStore,
        connector: DatabaseConnector,
        llm: LLMService,
        redaction: RedactionService,
        audit: AuditService,
        today: Callable[[], date] = date.today
    ):
        self.resolver = resolver
        self.store = store
        self.connector = connector
        self.llm = llm
        self.redaction = redaction
        self.audit = audit
        self.today = today

    async def _generate(self, state: PipelineState, system_prompt: str, base_prompt: str) -> PipelineState:
        sql = await self.llm.generate_sql(system_prompt, draft_prompt(state, base_prompt))
        return to_candidate(state, sql)

    async def _execute(
        self,
        state: PipelineState,
        connection: Connection
    ) -> Tuple[PipelineState, List[Dict[str, Any]]]:
        if state.phase is not Phase.VALIDATED:
            raise RuntimeError(f"Refusing to execute SQL in phase {state.phase.value}")
        try:
            rows = await self.connector.execute(connection, state.last_sql)
        except Exception as e:
            log_sql_error(logger, state.last_sql, connection.id, e, attempt=state.attempt)
            return to_execution_failed(state, e), []
        return to_executed(state), rows

    async def _summarize(
        self,
        question: str,
        sql: str,
        rows: List[Dict[str, Any]],
        row_count: int
    ) -> str:
        try:
            summary = await self.llm.summarize_result(question, sql, rows, row_count)
        except Exception as e:
            logger.error(f"生成结果总结失败，使用默认文案: {e}", exc_info=True)
            return SUMMARY_FALLBACK
        return summary or SUMMARY_FALLBACK

    async def answer(
        self,
        connection: Connection,
        question: str,
        user_id: Optional[str] = None,
        role_ids: Sequence[str] = ()
    ) -> QueryAnswer:
        """
        回答自然语言问题

        Args:
            connection: 目标连接
            question: 用户问题
            user_id: 请求用户ID
            role_ids: 请求用户的角色ID列表

        Returns:
            QueryAnswer（rows 最多100行，row_count 为实际总行数）

        Raises:
            GenerationExhausted: 3次尝试均未得到可执行的SQL
            IntrospectionFailed: 读取表结构失败
            RedactionPolicyError: 规则文档格式不正确
        """
        policy = await self.resolver.resolve(connection, user_id, role_ids)
        notes = self.store.get_table_metadata(connection.id)
        adapter = DatabaseAdapterFactory.get_adapter(connection.db_type)

        system_prompt = build_system_prompt(adapter.get_dialect_label(), adapter.get_row_limit_hint())
        base_prompt = build_user_prompt(question, policy.filtered_schema, notes, self.today())

        state = PipelineState()
        rows: List[Dict[str, Any]] = []

        while True:
            state = await self._generate(state, system_prompt, base_prompt)
            state = validate_candidate(state)
            if state.phase is Phase.VALIDATED:
                state, rows = await self._execute(state, connection)

            if state.phase is Phase.EXECUTED:
                break

            if state.attempt >= MAX_ATTEMPTS:
                logger.warning(
                    f"SQL生成失败，已达到最大尝试次数: connection_id={connection.id}, "
                    f"last_error={state.last_error}"
                )
                self.audit.record(
                    "chat_query_failed",
                    user_id=user_id,
                    connection_id=connection.id,
                    details={
                        "question": question,
                        "lastSQL": state.last_sql,
                        "lastError": state.last_error,
                        "attempts": state.attempt,
                    },
                )
                raise GenerationExhausted(
                    state.attempt,
                    state.last_sql,
                    state.last_error,
                    policy.available_tables(),
                )

            state = next_attempt(state)

        redacted_rows, impact = self.redaction.redact(rows, policy, state.last_sql)
        summary = await self._summarize(question, state.last_sql, redacted_rows, len(rows))

        self.audit.record(
            "chat_query",
            user_id=user_id,
            connection_id=connection.id,
            details={
                "question": question,
                "sql": state.last_sql,
                "redactionsApplied": impact.redactions_applied,
                "redactionImpact": impact.to_audit_dict(),
            },
        )

        logger.info(
            f"问答完成: connection_id={connection.id}, attempts={state.attempt}, rows={len(rows)}"
        )

        return QueryAnswer(
            sql=state.last_sql,
            summary=summary,
            row_count=len(rows),
            rows=redacted_rows[:ROW_LIMIT],
            impact=impact,
            attempts=state.attempt,
        )

    async def run_sql(
        self,
        connection: Connection,
        sql: str,
        user_id: Optional[str] = None,
        role_ids: Sequence[str] = ()
    ) -> ManualQueryResult:
        """
        执行用户手写的SQL（同样经过只读校验和结果脱敏）

        Raises:
            InvalidQuery: SQL未通过只读校验
            Exception: 执行失败
        """
        validate_select_only(sql)
        policy = await self.resolver.resolve(connection, user_id, role_ids)

        start = time.monotonic()
        try:
            rows = await self.connector.execute(connection, sql)
        except Exception as e:
            log_sql_error(logger, sql, connection.id, e)
            self.audit.record(
                "query_error",
                user_id=user_id,
                connection_id=connection.id,
                details={"sql": sql, "error": str(e)},
            )
            raise
        execution_time_ms = int((time.monotonic() - start) * 1000)

        redacted_rows, impact = self.redaction.redact(rows, policy, sql)

        self.audit.record(
            "query_run",
            user_id=user_id,
            connection_id=connection.id,
            details={
                "sql": sql,
                "rowCount": len(rows),
                "executionTime": execution_time_ms,
                "redactionsApplied": impact.redactions_applied,
                "redactionImpact": impact.to_audit_dict(),
            },
        )

        return ManualQueryResult(
            rows=redacted_rows[:ROW_LIMIT],
            row_count=len(rows),
            execution_time_ms=execution_time_ms,
            impact=impact,
        )
