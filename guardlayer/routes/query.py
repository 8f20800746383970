"""
手动SQL执行API路由
与问答使用同一套只读校验和结果脱敏
"""
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from ..services.errors import (
    ConnectionNotFound,
    IntrospectionFailed,
    InvalidQuery,
    RedactionPolicyError,
)
from ..services.query_pipeline import QueryPipeline
from ..services.rule_store import RuleStore
from ..utils.logger import get_logger
from .deps import get_identity, get_pipeline, get_store

logger = get_logger(__name__)
router = APIRouter(prefix="/api/query", tags=["query"])


class RunQueryRequest(BaseModel):
    """手动SQL执行请求"""
    model_config = ConfigDict(populate_by_name=True)

    connection_id: str = Field(..., alias="connectionId", description="连接ID")
    sql: str = Field(..., min_length=1, description="只读SQL")


@router.post("/run", status_code=status.HTTP_200_OK)
async def run_query(
    request: RunQueryRequest,
    identity=Depends(get_identity),
    store: RuleStore = Depends(get_store),
    pipeline: QueryPipeline = Depends(get_pipeline),
):
    """
    执行只读SQL，返回脱敏后的前100行
    """
    try:
        connection = store.get_connection(request.connection_id)
        user_id, role_ids = identity

        result = await pipeline.run_sql(connection, request.sql, user_id, role_ids)
        return {
            "rows": result.rows,
            "rowCount": result.row_count,
            "executionTime": result.execution_time_ms,
            "redactionsApplied": result.impact.redactions_applied,
            "hiddenColumns": result.impact.hidden_columns,
        }

    except ConnectionNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidQuery as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except IntrospectionFailed as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except RedactionPolicyError as e:
        logger.error(f"脱敏规则格式错误: {str(e)}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    except Exception as e:
        logger.error(f"执行SQL失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"执行SQL失败: {str(e)}"
        )
