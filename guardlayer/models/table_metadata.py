"""
表/列元数据模型（提示词中的业务说明）
"""
from sqlalchemy import Column, String, Text, Integer, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from .base import Base, TimestampMixin


class TableMetadata(Base, TimestampMixin):
    """表元数据"""
    __tablename__ = "table_metadata"
    __table_args__ = (
        UniqueConstraint("connection_id", "table_name", name="uq_table_metadata"),
    )

    id = Column(String(36), primary_key=True)
    connection_id = Column(String(36), ForeignKey("connections.id", ondelete="CASCADE"), nullable=False, index=True)
    table_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    tags = Column(Text, nullable=True)  # JSON array

    connection = relationship("Connection", back_populates="table_metadata")
    columns = relationship(
        "ColumnMetadata", back_populates="table", cascade="all, delete-orphan", lazy="selectin"
    )


class ColumnMetadata(Base, TimestampMixin):
    """列元数据"""
    __tablename__ = "column_metadata"
    __table_args__ = (
        UniqueConstraint("table_metadata_id", "column_name", name="uq_column_metadata"),
    )

    id = Column(String(36), primary_key=True)
    table_metadata_id = Column(String(36), ForeignKey("table_metadata.id", ondelete="CASCADE"), nullable=False)
    column_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    example = Column(Text, nullable=True)
    importance = Column(Integer, nullable=True)

    table = relationship("TableMetadata", back_populates="columns")
