"""Exception handling utilities for FastAPI routes.

统一异常处理，集成 domains.core 的 ApplicationError 体系。

响应体与 ApiResponse 信封一致：{success: false, error, code, details}。
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from domains.core import ApplicationError

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """
    注册 FastAPI 异常处理器

    将 ApplicationError 及其子类自动转换为 HTTP 响应。

    使用示例:
        app = FastAPI()
        register_exception_handlers(app)
    """

    @app.exception_handler(ApplicationError)
    async def application_error_handler(
        request: Request,
        exc: ApplicationError
    ) -> JSONResponse:
        """处理 ApplicationError 及其子类"""
        logger.warning(
            f"Application error: [{exc.code}] {exc.message}",
            extra={"details": exc.details}
        )

        headers = None
        if exc.http_status_code == 401:
            headers = {"WWW-Authenticate": "Bearer"}

        return JSONResponse(
            status_code=exc.http_status_code,
            content={
                "success": False,
                "error": exc.message,
                "code": exc.code,
                "details": exc.details,
            },
            headers=headers,
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request,
        exc: Exception
    ) -> JSONResponse:
        """全局异常处理器 - 捕获所有未处理的异常"""
        logger.exception(
            f"Unhandled exception: {type(exc).__name__}: {exc}",
            extra={
                "path": request.url.path,
                "method": request.method,
            }
        )

        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": f"Internal server error: {type(exc).__name__}",
            }
        )


__all__ = [
    "register_exception_handlers",
]
