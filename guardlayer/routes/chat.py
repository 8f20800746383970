"""
自然语言问答API路由
"""
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from ..services.errors import (
    ConnectionNotFound,
    GenerationExhausted,
    IntrospectionFailed,
    RedactionPolicyError,
)
from ..services.query_pipeline import QueryPipeline
from ..services.rule_store import RuleStore
from ..utils.logger import get_logger
from .deps import get_identity, get_pipeline, get_store

logger = get_logger(__name__)
router = APIRouter(prefix="/api", tags=["chat"])

EXHAUSTED_HINT = (
    "The AI couldn't find the right columns. Try rephrasing your question "
    "or check if the data exists in your database."
)


class ChatRequest(BaseModel):
    """问答请求"""
    model_config = ConfigDict(populate_by_name=True)

    question: str = Field(..., min_length=5, description="自然语言问题")
    connection_id: str = Field(..., alias="connectionId", description="连接ID")


@router.post("/chat", status_code=status.HTTP_200_OK)
async def chat(
    request: ChatRequest,
    identity=Depends(get_identity),
    store: RuleStore = Depends(get_store),
    pipeline: QueryPipeline = Depends(get_pipeline),
):
    """
    回答自然语言问题，返回 {sql, summary, rowCount, rows}

    生成失败3次返回400，附带最后一次的SQL和错误信息
    """
    try:
        logger.info(f"收到问答请求: connection_id={request.connection_id}, question={request.question[:100]}")
        connection = store.get_connection(request.connection_id)
        user_id, role_ids = identity

        answer = await pipeline.answer(connection, request.question, user_id, role_ids)
        return {
            "sql": answer.sql,
            "summary": answer.summary,
            "rowCount": answer.row_count,
            "rows": answer.rows,
        }

    except ConnectionNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except GenerationExhausted as e:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": str(e),
                "lastError": e.last_error,
                "lastSQL": e.last_sql,
                "hint": EXHAUSTED_HINT,
                "availableTables": e.available_tables,
            },
        )
    except IntrospectionFailed as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except RedactionPolicyError as e:
        logger.error(f"脱敏规则格式错误: {str(e)}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    except Exception as e:
        logger.error(f"问答失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"问答失败: {str(e)}"
        )
