# wolmgr/services/background_service.py
"""
Long-running asyncio tasks started with the application.

Each server worker runs its own copy. The only service today is the
processing-timeout monitor; its recoveries are conditional store writes,
so several workers running it side by side is harmless.
"""

import asyncio
from typing import Awaitable, Callable, Dict, List

from wolmgr.core.config import config
from wolmgr.core.setup_logging import setup_default_logging
from wolmgr.services.task_service import check_processing_timeouts

logger = setup_default_logging()

ServiceFactory = Callable[[], Awaitable[None]]


class BackgroundServiceManager:
    """Starts the enabled services in the lifespan and cancels them on shutdown."""

    def __init__(self):
        self.tasks: List[asyncio.Task] = []
        self.is_running = False

    def enabled_services(self) -> Dict[str, ServiceFactory]:
        """Services to run under the current configuration, by task name."""
        services: Dict[str, ServiceFactory] = {}
        if config.PROCESSING_TIMEOUT_SECONDS > 0:
            services["processing_timeout_monitor"] = check_processing_timeouts
        else:
            logger.info("Processing timeout monitor disabled (PROCESSING_TIMEOUT_SECONDS=0)")
        return services

    async def start_all_services(self) -> None:
        if self.is_running:
            logger.warning("Background services are already running")
            return

        for name, factory in self.enabled_services().items():
            self.tasks.append(asyncio.create_task(factory(), name=name))

        self.is_running = True
        logger.info(
            f"Started {len(self.tasks)} background service(s): "
            + (", ".join(task.get_name() for task in self.tasks) or "none")
        )

    async def stop_all_services(self) -> None:
        if not self.is_running:
            logger.warning("Background services are not running")
            return

        for task in self.tasks:
            task.cancel()
        # Wait for cancellation so no store call outlives the shutdown
        await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks.clear()

        self.is_running = False
        logger.info("Background services stopped")

    def get_service_status(self) -> Dict:
        """
        Snapshot reported by /api/health.

        Returns:
            Dict: ``is_running``, task count and per-service state
        """
        return {
            "is_running": self.is_running,
            "tasks": len(self.tasks),
            "services": [
                {"name": task.get_name(), "done": task.done(), "cancelled": task.cancelled()}
                for task in self.tasks
            ],
        }


background_manager = BackgroundServiceManager()
