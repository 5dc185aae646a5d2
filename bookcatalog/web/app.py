"""
FastAPI Web应用
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from bookcatalog.config import settings
from bookcatalog.core.aggregation import AggregationEngine
from bookcatalog.core.errors import CatalogError
from bookcatalog.core.review_store import ReviewStore
from bookcatalog.core.token_validator import TokenValidator
from bookcatalog.database import close_database, init_database
from bookcatalog.utils.logger import log, setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    setup_logging(settings.logging)
    log.info("应用启动中...")

    settings.ensure_directories()

    session_maker = await init_database()
    store = ReviewStore(session_maker, timeout=settings.database.timeout)
    app.state.review_store = store
    app.state.token_validator = TokenValidator(store, expire_days=settings.security.token_expire_days)
    app.state.review_engine = AggregationEngine(
        store,
        min_rating=settings.reviews.min_rating,
        max_rating=settings.reviews.max_rating,
        max_conflict_retries=settings.reviews.max_conflict_retries,
    )

    yield

    log.info("应用关闭中...")
    await close_database()
    log.info("应用已关闭")


app = FastAPI(
    title=settings.release.name,
    description="书籍目录与评分服务",
    version=settings.release.version,
    lifespan=lifespan,
)


@app.exception_handler(CatalogError)
async def catalog_error_handler(request: Request, exc: CatalogError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    # 字段类型错误与缺失统一按 400 处理
    log.debug(f"请求格式错误 {request.method} {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=400, content={"detail": "Invalid request fields"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    log.exception(f"未处理的异常 {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Server error"})


# 导入路由（延迟导入避免循环依赖）
from bookcatalog.web.routes import auth, books, reviews  # noqa: E402

app.include_router(auth.router, tags=["认证"])
app.include_router(books.router, tags=["书籍"])
app.include_router(reviews.router, tags=["评论"])


@app.get("/health")
async def health():
    """健康检查"""
    return {"status": "ok", "version": settings.release.version}


log.info("FastAPI应用初始化完成")
