"""
服务层包
"""
from .encryption_service import EncryptionService, get_encryption_service
from .llm_service import LLMService, get_llm_service
from .database_connector import DatabaseConnector, get_database_connector
from .cache_service import SchemaCacheService
from .schema_service import SchemaService
from .rule_store import RuleStore
from .audit_service import AuditService
from .policy_resolver import PolicyResolver, ResolvedPolicy, build_policy
from .redaction_service import RedactionService, TokenSource, RandomTokenSource
from .query_pipeline import QueryPipeline, PipelineState, Phase
from .health_service import HealthService
from .errors import (
    GuardLayerError,
    ConnectionNotFound,
    InvalidQuery,
    IntrospectionFailed,
    RedactionPolicyError,
    GenerationExhausted,
)
from .dto import (
    RuleType,
    RuleSource,
    ColumnInfo,
    SchemaSnapshot,
    EffectiveRule,
    RedactionImpact,
    QueryAnswer,
    ManualQueryResult,
)

__all__ = [
    "EncryptionService",
    "get_encryption_service",
    "LLMService",
    "get_llm_service",
    "DatabaseConnector",
    "get_database_connector",
    "SchemaCacheService",
    "SchemaService",
    "RuleStore",
    "AuditService",
    "PolicyResolver",
    "ResolvedPolicy",
    "build_policy",
    "RedactionService",
    "TokenSource",
    "RandomTokenSource",
    "QueryPipeline",
    "PipelineState",
    "Phase",
    "HealthService",
    "GuardLayerError",
    "ConnectionNotFound",
    "InvalidQuery",
    "IntrospectionFailed",
    "RedactionPolicyError",
    "GenerationExhausted",
    "RuleType",
    "RuleSource",
    "ColumnInfo",
    "SchemaSnapshot",
    "EffectiveRule",
    "RedactionImpact",
    "QueryAnswer",
    "ManualQueryResult",
]
