"""
FastAPI 应用入口
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from settlement.config import get_settings
from settlement.database import async_session_maker, init_db
from settlement.api import api_router
from settlement.services.cache_store import build_cache_store
from settlement.services.pipeline import KeyedLocks
from settlement.workers.settlement_worker import SettlementWorker
from settlement import models  # noqa: F401  (确保所有模型已注册到 Base.metadata，用于 create_all)

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # 启动时初始化数据库
    await init_db()

    # 进程级共享对象：缓存、SKU 锁、会话工厂
    app.state.cache_store = build_cache_store(settings)
    app.state.settlement_locks = KeyedLocks()
    app.state.session_maker = async_session_maker
    logger.info("缓存后端: %s", settings.cache_backend)

    # 启动定时结算 worker（可通过配置关闭，改用独立进程）
    worker_task: asyncio.Task | None = None
    worker: SettlementWorker | None = None
    if settings.enable_settlement_worker:
        worker = SettlementWorker(
            cache=app.state.cache_store,
            locks=app.state.settlement_locks,
            settings=settings,
        )
        worker_task = asyncio.create_task(worker.run_forever())

    yield
    # 关闭时清理资源
    if worker:
        worker.stop()
    if worker_task:
        worker_task.cancel()
        try:
            await worker_task
        except asyncio.CancelledError:
            pass
    await app.state.cache_store.close()


app = FastAPI(
    title="成本结算系统",
    description="待结算 / 到账明细聚合、利润计算与结算数据查询",
    version="1.0.0",
    lifespan=lifespan,
)

# 配置 CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # 生产环境应限制具体域名
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册路由
app.include_router(api_router, prefix="/api")


@app.get("/")
async def root():
    """根路径"""
    return {
        "name": "成本结算系统",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """健康检查"""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "settlement.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
