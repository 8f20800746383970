"""
审计日志API路由
"""
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from ..services.audit_service import AuditService, parse_details
from ..utils.datetime_helper import to_iso_string
from ..utils.logger import get_logger
from .deps import get_audit

logger = get_logger(__name__)
router = APIRouter(prefix="/api/audit", tags=["audit"])


class AuditLogResponse(BaseModel):
    """审计日志响应"""
    id: str
    action: str
    user_id: Optional[str]
    connection_id: Optional[str]
    details: Any
    created_at: Optional[str]


@router.get("", response_model=List[AuditLogResponse], status_code=status.HTTP_200_OK)
async def list_audit_logs(
    user_id: Optional[str] = Query(None, alias="userId"),
    connection_id: Optional[str] = Query(None, alias="connectionId"),
    action: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    audit: AuditService = Depends(get_audit),
):
    """
    按用户、连接、动作过滤审计日志（按时间倒序）
    """
    try:
        entries = audit.list(user_id=user_id, connection_id=connection_id, action=action, limit=limit)
        return [
            AuditLogResponse(
                id=entry.id,
                action=entry.action,
                user_id=entry.user_id,
                connection_id=entry.connection_id,
                details=parse_details(entry),
                created_at=to_iso_string(entry.created_at),
            )
            for entry in entries
        ]

    except Exception as e:
        logger.error(f"获取审计日志失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"获取审计日志失败: {str(e)}"
        )
