"""
脱敏规则API路由
列级规则、全局正则规则、角色规则集、用户规则集
"""
import json
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from ..models.redaction import GlobalPatternRule, RedactionRule, RoleRedaction, UserRedaction
from ..services.audit_service import AuditService
from ..services.dto import RuleType
from ..services.errors import ConnectionNotFound, IntrospectionFailed, RedactionPolicyError
from ..services.policy_resolver import decode_role_document, decode_user_document, normalize_table_name
from ..services.rule_store import RuleStore
from ..services.schema_service import SchemaService
from ..utils.datetime_helper import to_iso_string
from ..utils.logger import get_logger
from .deps import get_audit, get_identity, get_schema_service, get_store

logger = get_logger(__name__)
router = APIRouter(prefix="/api/redactions", tags=["redactions"])


# ============ Request/Response Models ============

class ColumnRuleRequest(BaseModel):
    """创建/更新列级规则请求"""
    model_config = ConfigDict(populate_by_name=True)

    connection_id: str = Field(..., alias="connectionId", description="连接ID")
    table_name: str = Field(..., alias="tableName", min_length=1, description="表名")
    column_name: str = Field(..., alias="columnName", min_length=1, description="列名")
    rule_type: RuleType = Field(..., alias="ruleType", description="规则类型，EXPOSE 表示删除该列规则")
    replacement: Optional[str] = Field(None, description="替换文本")
    pattern: Optional[str] = Field(None, description="正则表达式")


class TableRuleRequest(BaseModel):
    """整表应用规则请求"""
    model_config = ConfigDict(populate_by_name=True)

    connection_id: str = Field(..., alias="connectionId", description="连接ID")
    table_name: str = Field(..., alias="tableName", min_length=1, description="表名")
    rule_type: RuleType = Field(..., alias="ruleType", description="规则类型（不支持 EXPOSE）")


class GlobalPatternRequest(BaseModel):
    """创建全局正则规则请求"""
    model_config = ConfigDict(populate_by_name=True)

    connection_id: Optional[str] = Field(None, alias="connectionId", description="连接ID，为空时作用于所有连接")
    name: str = Field(..., min_length=1, description="规则名称")
    pattern: str = Field(..., min_length=1, description="正则表达式")
    replacement: Optional[str] = Field(None, description="替换文本，默认 ***REDACTED***")
    role: Optional[str] = Field(None, description="角色说明")
    is_active: bool = Field(True, alias="isActive", description="是否启用")


class RoleRedactionRequest(BaseModel):
    """写入角色规则集请求"""
    model_config = ConfigDict(populate_by_name=True)

    connection_id: str = Field(..., alias="connectionId", description="连接ID")
    role_id: str = Field(..., alias="roleId", min_length=1, description="角色ID")
    role_name: Optional[str] = Field(None, alias="roleName", description="角色名称")
    rules: Dict[str, Any] = Field(..., description="以表名为键的规则文档")


class UserRedactionRequest(BaseModel):
    """写入用户规则集请求"""
    model_config = ConfigDict(populate_by_name=True)

    connection_id: str = Field(..., alias="connectionId", description="连接ID")
    user_id: str = Field(..., alias="userId", min_length=1, description="用户ID")
    rules: List[Dict[str, Any]] = Field(..., description="规则数组，每项包含 tableName/columnName/ruleType")


class ColumnRuleResponse(BaseModel):
    """列级规则响应"""
    id: str
    connection_id: str
    table_name: str
    column_name: str
    rule_type: str
    replacement: Optional[str]
    pattern: Optional[str]
    created_at: Optional[str]


class GlobalPatternResponse(BaseModel):
    """全局正则规则响应"""
    id: str
    connection_id: Optional[str]
    name: str
    pattern: str
    replacement: Optional[str]
    role: Optional[str]
    is_active: bool
    created_at: Optional[str]


class RoleRedactionResponse(BaseModel):
    """角色规则集响应"""
    id: str
    role_id: str
    role_name: Optional[str]
    connection_id: str
    rules: Any
    updated_at: Optional[str]


class UserRedactionResponse(BaseModel):
    """用户规则集响应"""
    id: str
    user_id: str
    connection_id: str
    rules: Any
    updated_at: Optional[str]


def _column_rule_response(rule: RedactionRule) -> ColumnRuleResponse:
    return ColumnRuleResponse(
        id=rule.id,
        connection_id=rule.connection_id,
        table_name=rule.table_name,
        column_name=rule.column_name,
        rule_type=rule.rule_type,
        replacement=rule.replacement,
        pattern=rule.pattern,
        created_at=to_iso_string(rule.created_at),
    )


def _global_pattern_response(rule: GlobalPatternRule) -> GlobalPatternResponse:
    return GlobalPatternResponse(
        id=rule.id,
        connection_id=rule.connection_id,
        name=rule.name,
        pattern=rule.pattern,
        replacement=rule.replacement,
        role=rule.role,
        is_active=bool(rule.is_active),
        created_at=to_iso_string(rule.created_at),
    )


def _stored_rules(raw: Optional[str]) -> Any:
    # 历史数据可能不是合法JSON，原样返回给管理端
    try:
        return json.loads(raw) if raw else None
    except json.JSONDecodeError:
        return raw


def _role_response(record: RoleRedaction) -> RoleRedactionResponse:
    return RoleRedactionResponse(
        id=record.id,
        role_id=record.role_id,
        role_name=record.role_name,
        connection_id=record.connection_id,
        rules=_stored_rules(record.rules),
        updated_at=to_iso_string(record.updated_at),
    )


def _user_response(record: UserRedaction) -> UserRedactionResponse:
    return UserRedactionResponse(
        id=record.id,
        user_id=record.user_id,
        connection_id=record.connection_id,
        rules=_stored_rules(record.rules),
        updated_at=to_iso_string(record.updated_at),
    )


def _rule_details(table_name: str, column_name: str, rule_type: str, pattern: Optional[str]) -> Dict[str, Any]:
    return {
        "tableName": table_name,
        "columnName": column_name,
        "ruleType": rule_type,
        "pattern": pattern,
    }


# ============ 全局正则规则 ============
# 必须注册在 /{connection_id} 之前

@router.get("/global", response_model=List[GlobalPatternResponse], status_code=status.HTTP_200_OK)
async def list_global_patterns(
    connection_id: Optional[str] = Query(None, alias="connectionId"),
    store: RuleStore = Depends(get_store),
):
    """
    获取全局正则规则列表
    """
    try:
        return [_global_pattern_response(r) for r in store.list_global_pattern_rules(connection_id)]

    except Exception as e:
        logger.error(f"获取全局正则规则失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"获取全局正则规则失败: {str(e)}"
        )


@router.post("/global", response_model=GlobalPatternResponse, status_code=status.HTTP_201_CREATED)
async def create_global_pattern(
    request: GlobalPatternRequest,
    identity=Depends(get_identity),
    store: RuleStore = Depends(get_store),
    audit: AuditService = Depends(get_audit),
):
    """
    创建全局正则规则（作用于结果值）
    """
    user_id, _ = identity
    try:
        logger.info(f"收到创建全局正则规则请求: name={request.name}")
        if request.connection_id:
            store.get_connection(request.connection_id)

        rule = store.create_global_pattern_rule(
            name=request.name,
            pattern=request.pattern,
            replacement=request.replacement,
            role=request.role,
            connection_id=request.connection_id,
            is_active=request.is_active,
        )
        audit.record(
            "global_redaction_created",
            user_id=user_id,
            connection_id=request.connection_id,
            details={"pattern": rule.pattern, "role": rule.role, "replacement": rule.replacement},
        )
        return _global_pattern_response(rule)

    except ConnectionNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        audit.record(
            "redaction_error",
            user_id=user_id,
            connection_id=request.connection_id,
            details={"error": str(e), "pattern": request.pattern},
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        logger.error(f"创建全局正则规则失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"创建全局正则规则失败: {str(e)}"
        )


@router.delete("/global/{rule_id}", status_code=status.HTTP_200_OK)
async def delete_global_pattern(
    rule_id: str,
    identity=Depends(get_identity),
    store: RuleStore = Depends(get_store),
    audit: AuditService = Depends(get_audit),
):
    """
    删除全局正则规则
    """
    try:
        if not store.delete_global_pattern_rule(rule_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Global pattern rule not found")

        user_id, _ = identity
        audit.record("global_redaction_deleted", user_id=user_id, details={"id": rule_id})
        return {"ok": True}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"删除全局正则规则失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"删除全局正则规则失败: {str(e)}"
        )


# ============ 角色规则集 ============

@router.get("/role/{connection_id}", response_model=List[RoleRedactionResponse], status_code=status.HTTP_200_OK)
async def list_role_redactions(connection_id: str, store: RuleStore = Depends(get_store)):
    """
    获取连接上的角色规则集
    """
    try:
        return [_role_response(r) for r in store.list_role_redactions(connection_id)]

    except Exception as e:
        logger.error(f"获取角色规则集失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"获取角色规则集失败: {str(e)}"
        )


@router.post("/role", response_model=RoleRedactionResponse, status_code=status.HTTP_200_OK)
async def upsert_role_redaction(
    request: RoleRedactionRequest,
    identity=Depends(get_identity),
    store: RuleStore = Depends(get_store),
    audit: AuditService = Depends(get_audit),
):
    """
    写入角色规则集；保存前校验文档格式
    """
    user_id, _ = identity
    try:
        logger.info(f"收到写入角色规则集请求: role_id={request.role_id}, connection_id={request.connection_id}")
        store.get_connection(request.connection_id)
        decode_role_document(request.rules)

        record = store.upsert_role_redaction(
            role_id=request.role_id,
            connection_id=request.connection_id,
            rules=request.rules,
            role_name=request.role_name,
        )
        audit.record(
            "role_redaction_saved",
            user_id=user_id,
            connection_id=request.connection_id,
            details={"roleId": request.role_id, "tables": list(request.rules.keys())},
        )
        return _role_response(record)

    except ConnectionNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except RedactionPolicyError as e:
        audit.record(
            "redaction_error",
            user_id=user_id,
            connection_id=request.connection_id,
            details={"roleId": request.role_id, "error": str(e)},
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        logger.error(f"写入角色规则集失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"写入角色规则集失败: {str(e)}"
        )


@router.delete("/role/{record_id}", status_code=status.HTTP_200_OK)
async def delete_role_redaction(record_id: str, store: RuleStore = Depends(get_store)):
    """
    删除角色规则集
    """
    try:
        if not store.delete_role_redaction(record_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Role redaction not found")
        return {"ok": True}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"删除角色规则集失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"删除角色规则集失败: {str(e)}"
        )


# ============ 用户规则集 ============

@router.get("/user/{connection_id}", response_model=List[UserRedactionResponse], status_code=status.HTTP_200_OK)
async def list_user_redactions(connection_id: str, store: RuleStore = Depends(get_store)):
    """
    获取连接上的用户规则集
    """
    try:
        return [_user_response(r) for r in store.list_user_redactions(connection_id)]

    except Exception as e:
        logger.error(f"获取用户规则集失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"获取用户规则集失败: {str(e)}"
        )


@router.post("/user", response_model=UserRedactionResponse, status_code=status.HTTP_200_OK)
async def upsert_user_redaction(
    request: UserRedactionRequest,
    identity=Depends(get_identity),
    store: RuleStore = Depends(get_store),
    audit: AuditService = Depends(get_audit),
):
    """
    写入用户规则集；保存前校验文档格式
    """
    actor_id, _ = identity
    try:
        logger.info(f"收到写入用户规则集请求: user_id={request.user_id}, connection_id={request.connection_id}")
        store.get_connection(request.connection_id)
        decode_user_document(request.rules)

        record = store.upsert_user_redaction(
            user_id=request.user_id,
            connection_id=request.connection_id,
            rules=request.rules,
        )
        audit.record(
            "user_redaction_saved",
            user_id=actor_id,
            connection_id=request.connection_id,
            details={"userId": request.user_id, "ruleCount": len(request.rules)},
        )
        return _user_response(record)

    except ConnectionNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except RedactionPolicyError as e:
        audit.record(
            "redaction_error",
            user_id=actor_id,
            connection_id=request.connection_id,
            details={"userId": request.user_id, "error": str(e)},
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        logger.error(f"写入用户规则集失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"写入用户规则集失败: {str(e)}"
        )


@router.delete("/user/{record_id}", status_code=status.HTTP_200_OK)
async def delete_user_redaction(record_id: str, store: RuleStore = Depends(get_store)):
    """
    删除用户规则集
    """
    try:
        if not store.delete_user_redaction(record_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User redaction not found")
        return {"ok": True}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"删除用户规则集失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"删除用户规则集失败: {str(e)}"
        )


# ============ 列级规则 ============

@router.post("", status_code=status.HTTP_200_OK)
async def set_column_rule(
    request: ColumnRuleRequest,
    identity=Depends(get_identity),
    store: RuleStore = Depends(get_store),
    audit: AuditService = Depends(get_audit),
):
    """
    创建或覆盖列级规则；EXPOSE 删除该列已有规则，返回 {ok, removed}
    """
    user_id, _ = identity
    details = _rule_details(request.table_name, request.column_name, request.rule_type.value, request.pattern)
    try:
        logger.info(
            f"收到列级规则请求: {request.table_name}.{request.column_name} -> {request.rule_type.value}"
        )
        store.get_connection(request.connection_id)

        if request.rule_type == RuleType.EXPOSE:
            removed = store.remove_column_rule(request.connection_id, request.table_name, request.column_name)
            audit.record("redaction_deleted", user_id=user_id, connection_id=request.connection_id, details=details)
            return {"ok": True, "removed": removed}

        rule = store.set_column_rule(
            connection_id=request.connection_id,
            table_name=request.table_name,
            column_name=request.column_name,
            rule_type=request.rule_type,
            replacement=request.replacement,
            pattern=request.pattern,
        )
        audit.record("redaction_created", user_id=user_id, connection_id=request.connection_id, details=details)
        return _column_rule_response(rule)

    except ConnectionNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        logger.error(f"写入列级规则失败: {str(e)}", exc_info=True)
        audit.record(
            "redaction_error",
            user_id=user_id,
            connection_id=request.connection_id,
            details={**details, "error": str(e)},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"写入列级规则失败: {str(e)}"
        )


@router.post("/table", status_code=status.HTTP_200_OK)
async def apply_table_rule(
    request: TableRuleRequest,
    identity=Depends(get_identity),
    store: RuleStore = Depends(get_store),
    schema_service: SchemaService = Depends(get_schema_service),
    audit: AuditService = Depends(get_audit),
):
    """
    对整张表的所有列应用同一规则（列来自表结构快照）
    """
    if request.rule_type == RuleType.EXPOSE:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="EXPOSE cannot be applied to a table")

    user_id, _ = identity
    try:
        connection = store.get_connection(request.connection_id)
        snapshot = await schema_service.get_schema(connection)

        table_name = normalize_table_name(request.table_name)
        columns = snapshot.get(table_name, [])
        if not columns:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No columns found")

        for column in columns:
            store.set_column_rule(
                connection_id=connection.id,
                table_name=table_name,
                column_name=column.name,
                rule_type=request.rule_type,
            )

        audit.record(
            "redaction_table_applied",
            user_id=user_id,
            connection_id=connection.id,
            details={"tableName": table_name, "ruleType": request.rule_type.value, "count": len(columns)},
        )
        return {
            "ok": True,
            "message": f"Applied {request.rule_type.value} to all columns in {table_name}",
            "count": len(columns),
        }

    except HTTPException:
        raise
    except ConnectionNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except IntrospectionFailed as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except Exception as e:
        logger.error(f"整表应用规则失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"整表应用规则失败: {str(e)}"
        )


@router.delete("/rule/{rule_id}", status_code=status.HTTP_200_OK)
async def delete_column_rule(
    rule_id: str,
    identity=Depends(get_identity),
    store: RuleStore = Depends(get_store),
    audit: AuditService = Depends(get_audit),
):
    """
    按ID删除列级规则
    """
    try:
        rule = store.delete_column_rule(rule_id)
        if rule is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Redaction rule not found")

        user_id, _ = identity
        audit.record(
            "redaction_deleted",
            user_id=user_id,
            connection_id=rule.connection_id,
            details={"id": rule_id, **_rule_details(rule.table_name, rule.column_name, rule.rule_type, rule.pattern)},
        )
        return {"ok": True}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"删除列级规则失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"删除列级规则失败: {str(e)}"
        )


@router.delete("/clear", status_code=status.HTTP_200_OK)
async def clear_column_rules(
    connection_id: Optional[str] = Query(None, alias="connectionId"),
    identity=Depends(get_identity),
    store: RuleStore = Depends(get_store),
    audit: AuditService = Depends(get_audit),
):
    """
    清空列级规则；指定 connectionId 时只清空该连接
    """
    try:
        deleted = store.clear_column_rules(connection_id)
        user_id, _ = identity
        audit.record(
            "redactions_cleared",
            user_id=user_id,
            connection_id=connection_id,
            details={"scope": connection_id or "global", "deleted": deleted},
        )
        return {
            "ok": True,
            "deleted": deleted,
            "scope": "connection" if connection_id else "global",
        }

    except Exception as e:
        logger.error(f"清空列级规则失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"清空列级规则失败: {str(e)}"
        )


@router.get("/{connection_id}", response_model=List[ColumnRuleResponse], status_code=status.HTTP_200_OK)
async def list_column_rules(connection_id: str, store: RuleStore = Depends(get_store)):
    """
    获取连接的列级规则
    """
    try:
        return [_column_rule_response(r) for r in store.get_column_rules(connection_id)]

    except Exception as e:
        logger.error(f"获取列级规则失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"获取列级规则失败: {str(e)}"
        )
