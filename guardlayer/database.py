"""
配置库初始化和会话管理
配置库保存连接、脱敏规则、元数据和审计日志，与被查询的目标数据库无关
"""
import os
from pathlib import Path
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session as SQLAlchemySession

from .models.base import Base
from .models import (  # noqa: F401  注册所有模型到 Base.metadata
    Connection,
    RedactionRule,
    RoleRedaction,
    UserRedaction,
    GlobalPatternRule,
    TableMetadata,
    ColumnMetadata,
    AuditLog,
)
from .utils.logger import get_logger

logger = get_logger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """配置库管理类"""

    def __init__(self, db_url: Optional[str] = None):
        """
        初始化配置库连接

        Args:
            db_url: 数据库URL，如果为None则从环境变量 CONFIG_DB_PATH 推导
        """
        if db_url is None:
            project_root = Path(__file__).resolve().parent.parent
            default_db_path = project_root / "data" / "guardlayer.db"

            db_path = os.getenv("CONFIG_DB_PATH", str(default_db_path))
            os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
            db_url = f"sqlite:///{db_path}"

        engine_config = {
            "pool_pre_ping": True,
            "echo": False,
        }

        if db_url.startswith("sqlite"):
            engine_config["connect_args"] = {"check_same_thread": False}
        else:
            engine_config.update({
                "pool_size": 10,
                "max_overflow": 20,
                "pool_timeout": 30,
                "pool_recycle": 3600,
            })

        self.engine = create_engine(db_url, **engine_config)

        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=self.engine,
            expire_on_commit=False  # 提交后对象仍可在会话外读取
        )

    def create_tables(self):
        """创建所有表"""
        Base.metadata.create_all(bind=self.engine)

    def drop_tables(self):
        """删除所有表（谨慎使用）"""
        Base.metadata.drop_all(bind=self.engine)

    @contextmanager
    def get_session(self) -> Generator[SQLAlchemySession, None, None]:
        """
        获取数据库会话的上下文管理器，正常退出时提交，异常时回滚

        Yields:
            SQLAlchemy会话对象
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


# 全局配置库实例
_db_instance = None


def get_database() -> Database:
    """获取全局配置库实例"""
    global _db_instance
    if _db_instance is None:
        _db_instance = Database()
    return _db_instance


def init_database(database: Optional[Database] = None) -> Database:
    """初始化配置库（创建所有表）"""
    db = database or get_database()
    db.create_tables()
    logger.info("配置库初始化完成")
    return db
