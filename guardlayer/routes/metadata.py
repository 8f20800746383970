"""
表/列元数据API路由
元数据作为业务说明写入SQL生成提示
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from ..services.dto import ColumnNote, TableNote
from ..services.errors import ConnectionNotFound
from ..services.rule_store import RuleStore
from ..utils.logger import get_logger
from .deps import get_store

logger = get_logger(__name__)
router = APIRouter(prefix="/api/metadata", tags=["metadata"])


class TableMetadataRequest(BaseModel):
    """写入表说明请求"""
    model_config = ConfigDict(populate_by_name=True)

    connection_id: str = Field(..., alias="connectionId", description="连接ID")
    table_name: str = Field(..., alias="tableName", min_length=1, description="表名")
    description: Optional[str] = Field(None, description="表说明")
    notes: Optional[str] = Field(None, description="补充说明")
    tags: List[str] = Field(default_factory=list, description="标签")


class ColumnMetadataRequest(BaseModel):
    """写入列说明请求"""
    model_config = ConfigDict(populate_by_name=True)

    connection_id: str = Field(..., alias="connectionId", description="连接ID")
    table_name: str = Field(..., alias="tableName", min_length=1, description="表名")
    column_name: str = Field(..., alias="columnName", min_length=1, description="列名")
    description: Optional[str] = Field(None, description="列说明")
    example: Optional[str] = Field(None, description="示例值")
    importance: Optional[int] = Field(None, ge=0, le=10, description="重要程度")


@router.get("/{connection_id}", response_model=List[TableNote], status_code=status.HTTP_200_OK)
async def get_metadata(connection_id: str, store: RuleStore = Depends(get_store)):
    """
    获取连接的表、列说明
    """
    try:
        store.get_connection(connection_id)
        return store.get_table_metadata(connection_id)

    except ConnectionNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        logger.error(f"获取元数据失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"获取元数据失败: {str(e)}"
        )


@router.post("/table", response_model=TableNote, status_code=status.HTTP_200_OK)
async def upsert_table_metadata(request: TableMetadataRequest, store: RuleStore = Depends(get_store)):
    """
    写入表说明
    """
    try:
        store.get_connection(request.connection_id)
        return store.upsert_table_metadata(
            connection_id=request.connection_id,
            table_name=request.table_name,
            description=request.description,
            notes=request.notes,
            tags=request.tags,
        )

    except ConnectionNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        logger.error(f"写入表说明失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"写入表说明失败: {str(e)}"
        )


@router.post("/column", response_model=ColumnNote, status_code=status.HTTP_200_OK)
async def upsert_column_metadata(request: ColumnMetadataRequest, store: RuleStore = Depends(get_store)):
    """
    写入列说明（表说明不存在时自动创建）
    """
    try:
        store.get_connection(request.connection_id)
        return store.upsert_column_metadata(
            connection_id=request.connection_id,
            table_name=request.table_name,
            column_name=request.column_name,
            description=request.description,
            example=request.example,
            importance=request.importance,
        )

    except ConnectionNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        logger.error(f"写入列说明失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"写入列说明失败: {str(e)}"
        )
