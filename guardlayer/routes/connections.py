"""
目标数据库连接API路由
"""
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from ..models.connection import Connection
from ..services.audit_service import AuditService
from ..services.database_adapters import DatabaseAdapterFactory
from ..services.database_connector import DatabaseConnector
from ..services.dto import ColumnInfo
from ..services.errors import ConnectionNotFound, IntrospectionFailed, RedactionPolicyError
from ..services.health_service import HealthService
from ..services.policy_resolver import PolicyResolver
from ..services.rule_store import RuleStore
from ..services.schema_service import SchemaService
from ..utils.datetime_helper import to_iso_string
from ..utils.logger import get_logger
from .deps import (
    get_audit,
    get_connector,
    get_health,
    get_identity,
    get_resolver,
    get_schema_service,
    get_store,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/api/connections", tags=["connections"])


# ============ Request/Response Models ============

class CreateConnectionRequest(BaseModel):
    """创建连接请求"""
    name: str = Field(..., min_length=1, description="连接名称")
    db_type: str = Field(..., alias="dbType", description="数据库类型（mysql, postgres, mssql, sqlite）")
    url: str = Field(..., min_length=1, description="连接地址（host:port/db 或 SQLite 文件路径）")
    username: Optional[str] = Field(None, description="用户名")
    password: Optional[str] = Field(None, description="密码")

    model_config = ConfigDict(populate_by_name=True)


class TestConnectionRequest(BaseModel):
    """测试连接请求（不保存）"""
    db_type: str = Field(..., alias="dbType", description="数据库类型")
    url: str = Field(..., min_length=1, description="连接地址")
    username: Optional[str] = Field(None, description="用户名")
    password: Optional[str] = Field(None, description="密码")

    model_config = ConfigDict(populate_by_name=True)


class ConnectionResponse(BaseModel):
    """连接响应（不含密码）"""
    id: str
    name: str
    db_type: str
    url: str
    username: Optional[str]
    status: str
    has_write: bool
    last_checked: Optional[str]
    created_at: Optional[str]
    updated_at: Optional[str]


class ConnectionCheckResponse(BaseModel):
    """连接检查响应"""
    status: str
    has_write: bool
    error: Optional[str] = None


class SchemaResponse(BaseModel):
    """当前身份可见的表结构"""
    connection_id: str
    tables: Dict[str, List[ColumnInfo]]
    redacted_columns: Dict[str, List[str]]


def _to_response(connection: Connection) -> ConnectionResponse:
    return ConnectionResponse(
        id=connection.id,
        name=connection.name,
        db_type=connection.db_type,
        url=connection.url,
        username=connection.username,
        status=connection.status,
        has_write=bool(connection.has_write),
        last_checked=to_iso_string(connection.last_checked),
        created_at=to_iso_string(connection.created_at),
        updated_at=to_iso_string(connection.updated_at),
    )


def _ensure_supported(db_type: str) -> None:
    if not DatabaseAdapterFactory.is_supported(db_type):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported dbType: {db_type}"
        )


# ============ API Endpoints ============

@router.post("", response_model=ConnectionResponse, status_code=status.HTTP_201_CREATED)
async def create_connection(
    request: CreateConnectionRequest,
    identity=Depends(get_identity),
    store: RuleStore = Depends(get_store),
    health: HealthService = Depends(get_health),
    audit: AuditService = Depends(get_audit),
):
    """
    保存连接并立即做一次健康检查
    """
    try:
        logger.info(f"收到创建连接请求: name={request.name}, db_type={request.db_type}")
        _ensure_supported(request.db_type)
        user_id, _ = identity

        connection = store.create_connection(
            name=request.name,
            db_type=request.db_type,
            url=request.url,
            username=request.username,
            password=request.password,
            user_id=user_id,
        )
        connection = await health.check(connection)

        audit.record(
            "connection_created",
            user_id=user_id,
            connection_id=connection.id,
            details={
                "name": connection.name,
                "dbType": connection.db_type,
                "status": connection.status,
                "hasWrite": connection.has_write,
            },
        )
        return _to_response(connection)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"创建连接失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"创建连接失败: {str(e)}"
        )


@router.get("", response_model=List[ConnectionResponse], status_code=status.HTTP_200_OK)
async def list_connections(
    mine: bool = False,
    identity=Depends(get_identity),
    store: RuleStore = Depends(get_store),
):
    """
    获取连接列表；mine=true 时只返回当前用户拥有的连接
    """
    try:
        user_id, _ = identity
        if mine and not user_id:
            return []
        connections = store.list_connections(user_id if mine else None)
        return [_to_response(c) for c in connections]

    except Exception as e:
        logger.error(f"获取连接列表失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"获取连接列表失败: {str(e)}"
        )


@router.post("/test", response_model=ConnectionCheckResponse, status_code=status.HTTP_200_OK)
async def test_connection(
    request: TestConnectionRequest,
    identity=Depends(get_identity),
    connector: DatabaseConnector = Depends(get_connector),
    audit: AuditService = Depends(get_audit),
):
    """
    测试连接参数（不保存）
    """
    try:
        logger.info(f"收到测试连接请求: db_type={request.db_type}")
        _ensure_supported(request.db_type)

        result = await connector.test_connection(
            request.db_type, request.url, request.username, request.password
        )
        user_id, _ = identity
        audit.record(
            "connection_tested",
            user_id=user_id,
            details={
                "dbType": request.db_type,
                "status": result.status,
                "hasWrite": result.has_write,
                "error": result.error,
            },
        )
        return ConnectionCheckResponse(**result.model_dump())

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"测试连接失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"测试连接失败: {str(e)}"
        )


@router.post("/{connection_id}/check", response_model=ConnectionResponse, status_code=status.HTTP_200_OK)
async def check_connection(
    connection_id: str,
    store: RuleStore = Depends(get_store),
    health: HealthService = Depends(get_health),
):
    """
    检查已保存连接的连通性与写权限
    """
    try:
        connection = store.get_connection(connection_id)
        return _to_response(await health.check(connection))

    except ConnectionNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        logger.error(f"检查连接失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"检查连接失败: {str(e)}"
        )


@router.get("/{connection_id}/schema", response_model=SchemaResponse, status_code=status.HTTP_200_OK)
async def get_connection_schema(
    connection_id: str,
    identity=Depends(get_identity),
    store: RuleStore = Depends(get_store),
    resolver: PolicyResolver = Depends(get_resolver),
):
    """
    获取当前身份可见的表结构（已移除被脱敏的列）
    """
    try:
        connection = store.get_connection(connection_id)
        user_id, role_ids = identity
        policy = await resolver.resolve(connection, user_id, role_ids)
        return SchemaResponse(
            connection_id=connection_id,
            tables=policy.filtered_schema,
            redacted_columns=policy.redacted_columns,
        )

    except ConnectionNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except IntrospectionFailed as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except RedactionPolicyError as e:
        logger.error(f"脱敏规则格式错误: {str(e)}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    except Exception as e:
        logger.error(f"获取表结构失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"获取表结构失败: {str(e)}"
        )


@router.delete("/{connection_id}", status_code=status.HTTP_200_OK)
async def delete_connection(
    connection_id: str,
    identity=Depends(get_identity),
    store: RuleStore = Depends(get_store),
    schema_service: SchemaService = Depends(get_schema_service),
    audit: AuditService = Depends(get_audit),
):
    """
    删除连接（级联删除规则与元数据，审计日志保留）
    """
    try:
        logger.info(f"收到删除连接请求: id={connection_id}")
        existing = store.get_connection(connection_id)
        user_id, _ = identity

        audit.record(
            "connection_deleted",
            user_id=user_id,
            details={
                "before": {
                    "id": existing.id,
                    "name": existing.name,
                    "dbType": existing.db_type,
                    "status": existing.status,
                    "lastChecked": to_iso_string(existing.last_checked),
                },
            },
        )
        store.delete_connection(connection_id)
        schema_service.invalidate(connection_id)

        return {"ok": True, "id": connection_id}

    except ConnectionNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        logger.error(f"删除连接失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"删除连接失败: {str(e)}"
        )
