"""Composition root: builds the bot services and owns their background loops."""

import asyncio
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from app.config import Settings
from app.logging_config import get_logger
from app.services.catalog_service import CatalogCache
from app.services.conversation_engine import ConversationEngine
from app.services.conversation_store import ConversationStore
from app.services.order_service import OrderFinalizer
from app.services.whatsapp_service import WhatsAppService

logger = get_logger("runtime")


class BotRuntime:
    def __init__(self, settings: Settings, session_factory: Callable[[], Session], gateway=None):
        self.settings = settings
        self.gateway = gateway or WhatsAppService.from_settings(settings)
        self.catalog = CatalogCache(session_factory, max_items=settings.catalog_max_items)
        self.store = ConversationStore(
            session_factory,
            inactivity_timeout=timedelta(minutes=settings.inactivity_timeout_minutes),
        )
        self.finalizer = OrderFinalizer(
            self.gateway,
            self.store,
            session_factory,
            commission_percentage=settings.intermediary_commission_percentage,
            intermediary_phone=settings.intermediary_phone_number,
            owner_phone=settings.store_owner_phone,
            store_name=settings.store_name,
        )
        self.engine = ConversationEngine(
            self.store,
            self.catalog,
            self.gateway,
            self.finalizer,
            commission_percentage=settings.intermediary_commission_percentage,
            store_name=settings.store_name,
            catalog_url=settings.catalog_url,
        )
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def start(self) -> None:
        """Load the catalog and open conversations, then start the periodic loops."""
        if self.running:
            return
        self.catalog.refresh()
        self.store.load_active()
        self._tasks = [
            asyncio.create_task(self._catalog_refresh_loop(), name="catalog-refresh"),
            asyncio.create_task(self._inactivity_sweep_loop(), name="inactivity-sweep"),
        ]
        logger.info(
            "Bot runtime started",
            extra={
                "context": {
                    "catalog_size": self.catalog.size,
                    "conversations": len(self.store.all()),
                    "gateway_configured": self.gateway.is_configured(),
                }
            },
        )

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if tasks:
            logger.info("Bot runtime stopped")

    async def _catalog_refresh_loop(self, interval: Optional[float] = None) -> None:
        interval = interval or max(self.settings.catalog_refresh_interval_seconds, 1.0)
        while True:
            try:
                await asyncio.sleep(interval)
                self.catalog.refresh()
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("Catalog refresh loop failed", extra={"context": {"error": str(exc)}})

    async def _inactivity_sweep_loop(self, interval: Optional[float] = None) -> None:
        interval = interval or max(self.settings.inactivity_sweep_interval_seconds, 1.0)
        while True:
            try:
                await asyncio.sleep(interval)
                results = await self.store.sweep_inactive(self.gateway)
                if results["nudged"]:
                    logger.info("Inactivity sweep processed", extra={"context": results})
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("Inactivity sweep loop failed", extra={"context": {"error": str(exc)}})
