"""Application lifecycle event handlers.

使用 ServiceRegistry 统一管理生命周期。
"""

from typing import Callable

from app.core.async_utils import run_sync
from domains.core import get_service_registry, register_core_services
from domains.infra.logging import get_logger
from domains.infra.settings import get_server_settings

logger = get_logger(__name__)


def create_start_handler() -> Callable:
    """Create startup event handler."""

    async def start_app() -> None:
        logger.info("api_starting", component="api")

        registry = register_core_services()

        if get_server_settings().ensure_schema:
            try:
                note_store = registry.get("note_store")
                await run_sync(note_store.ensure_schema)
                logger.info("schema_ready", component="note_store")
            except Exception as e:
                logger.warning("schema_init_skipped", component="note_store", error=str(e))

        logger.info(
            "api_started",
            component="api",
            services=len(registry.registered_services),
        )

    return start_app


def create_stop_handler() -> Callable:
    """Create shutdown event handler."""

    async def stop_app() -> None:
        logger.info("api_stopping", component="api")
        await get_service_registry().shutdown()
        logger.info("api_stopped", component="api")

    return stop_app
