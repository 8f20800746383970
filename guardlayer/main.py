"""
GuardLayer - 后端主入口
受策略保护的自然语言查询服务：表结构过滤、只读SQL生成、结果脱敏与审计
"""
import asyncio
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

from .database import Database, get_database, init_database
from .middleware import IdentityMiddleware
from .routes import (
    audit_router,
    cache_router,
    chat_router,
    connections_router,
    metadata_router,
    query_router,
    redactions_router,
)
from .services.audit_service import AuditService
from .services.cache_service import SchemaCacheService
from .services.database_connector import DatabaseConnector, get_database_connector
from .services.encryption_service import get_encryption_service
from .services.health_service import HealthService, get_health_check_interval
from .services.llm_service import LLMService, get_llm_service
from .services.policy_resolver import PolicyResolver
from .services.query_pipeline import QueryPipeline
from .services.redaction_service import RedactionService
from .services.rule_store import RuleStore
from .services.schema_service import SchemaService
from .utils.logger import setup_logger

# 加载环境变量
load_dotenv()

# 初始化日志
logger = setup_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    # 在多进程模式下，每个worker都会执行此代码
    worker_id = os.getpid()
    logger.info(f"Worker {worker_id} 正在启动...")

    try:
        init_database(app.state.database)
        logger.info(f"Worker {worker_id} 配置库初始化成功")
    except Exception as e:
        logger.error(f"Worker {worker_id} 配置库初始化失败: {e}", exc_info=True)
        raise

    health_task = None
    interval = app.state.health_check_interval
    if interval > 0:
        health_task = asyncio.create_task(app.state.health.run_periodically(interval))
    else:
        logger.info("定期连接健康检查已关闭")

    logger.info(f"Worker {worker_id} 启动完成")

    yield

    logger.info(f"Worker {worker_id} 正在关闭...")
    if health_task is not None:
        health_task.cancel()
        try:
            await health_task
        except asyncio.CancelledError:
            pass


def create_app(
    database: Optional[Database] = None,
    connector: Optional[DatabaseConnector] = None,
    llm: Optional[LLMService] = None,
    redaction: Optional[RedactionService] = None,
    schema_cache: Optional[SchemaCacheService] = None,
    health_check_interval: Optional[int] = None
) -> FastAPI:
    """
    创建应用并装配服务（挂在 app.state 上供路由使用）

    Args:
        database: 配置库，默认使用全局实例
        connector: 目标库连接器
        llm: LLM服务
        redaction: 脱敏服务
        schema_cache: 表结构缓存
        health_check_interval: 健康检查间隔（秒），0 表示关闭；默认读取 HEALTH_CHECK_INTERVAL

    Returns:
        FastAPI 应用
    """
    app = FastAPI(
        title="GuardLayer API",
        description="受策略保护的自然语言数据查询服务",
        version="1.0.0",
        lifespan=lifespan
    )

    database = database or get_database()
    encryption_service = get_encryption_service()
    connector = connector or get_database_connector()
    schema_cache = schema_cache or SchemaCacheService()

    store = RuleStore(database, encryption_service)
    audit = AuditService(database)
    schema_service = SchemaService(schema_cache, connector)
    resolver = PolicyResolver(store, schema_service)
    redaction = redaction or RedactionService()
    llm = llm or get_llm_service()

    app.state.database = database
    app.state.connector = connector
    app.state.schema_cache = schema_cache
    app.state.store = store
    app.state.audit = audit
    app.state.schema_service = schema_service
    app.state.resolver = resolver
    app.state.pipeline = QueryPipeline(resolver, store, connector, llm, redaction, audit)
    app.state.health = HealthService(store, connector)
    app.state.health_check_interval = (
        get_health_check_interval() if health_check_interval is None else health_check_interval
    )

    # 注册路由
    app.include_router(connections_router)
    app.include_router(redactions_router)
    app.include_router(metadata_router)
    app.include_router(chat_router)
    app.include_router(query_router)
    app.include_router(audit_router)
    app.include_router(cache_router)

    # 身份信息由上游网关注入请求头
    app.add_middleware(IdentityMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://localhost:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def root():
        return {"message": "GuardLayer API", "status": "running"}

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    host = os.getenv("BACKEND_HOST", "0.0.0.0")
    port = int(os.getenv("BACKEND_PORT", 8000))
    workers = int(os.getenv("BACKEND_WORKERS", 1))
    log_level = os.getenv("LOG_LEVEL", "info").lower()

    logger.info(f"启动服务器: {host}:{port}, workers={workers}, log_level={log_level}")

    # 使用 workers 或 reload 时都必须传递导入字符串
    if workers > 1:
        uvicorn.run(
            "guardlayer.main:app",
            host=host,
            port=port,
            workers=workers,
            log_level=log_level,
            access_log=log_level == "debug"
        )
    else:
        uvicorn.run(
            "guardlayer.main:app",
            host=host,
            port=port,
            log_level=log_level,
            access_log=log_level == "debug",
            reload=True
        )
