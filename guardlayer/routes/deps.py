"""
路由依赖
服务实例在应用启动时创建并挂在 app.state 上，路由通过 FastAPI 依赖获取
"""
from typing import List, Optional, Tuple

from fastapi import Request

from ..services.audit_service import AuditService
from ..services.cache_service import SchemaCacheService
from ..services.database_connector import DatabaseConnector
from ..services.health_service import HealthService
from ..services.policy_resolver import PolicyResolver
from ..services.query_pipeline import QueryPipeline
from ..services.rule_store import RuleStore
from ..services.schema_service import SchemaService


def get_store(request: Request) -> RuleStore:
    return request.app.state.store


def get_audit(request: Request) -> AuditService:
    return request.app.state.audit


def get_cache(request: Request) -> SchemaCacheService:
    return request.app.state.schema_cache


def get_schema_service(request: Request) -> SchemaService:
    return request.app.state.schema_service


def get_connector(request: Request) -> DatabaseConnector:
    return request.app.state.connector


def get_resolver(request: Request) -> PolicyResolver:
    return request.app.state.resolver


def get_pipeline(request: Request) -> QueryPipeline:
    return request.app.state.pipeline


def get_health(request: Request) -> HealthService:
    return request.app.state.health


def get_identity(request: Request) -> Tuple[Optional[str], List[str]]:
    """返回 (user_id, role_ids)，由 IdentityMiddleware 从请求头解析"""
    return (
        getattr(request.state, "user_id", None),
        getattr(request.state, "role_ids", []),
    )
