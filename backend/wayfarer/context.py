"""
Process-wide objects constructed once at start-up.

The FastAPI lifespan builds an AppContext and stores it on app.state;
handlers reach it through the get_context dependency. Nothing here is a
module-level singleton, so tests can build their own context.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from wayfarer.config import Settings, get_settings
from wayfarer.resilience.registry import CircuitBreakerRegistry
from wayfarer.scheduler import StatusSweepScheduler

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    settings: Settings
    session_factory: Callable[[], Session]
    breakers: CircuitBreakerRegistry
    scheduler: StatusSweepScheduler

    def start(self) -> None:
        if self.settings.scheduler_enabled:
            self.scheduler.start()
        else:
            logger.info("Scheduler disabled by configuration")

    def shutdown(self) -> None:
        self.scheduler.shutdown()


def build_context(
    settings: Optional[Settings] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> AppContext:
    settings = settings or get_settings()
    if session_factory is None:
        from wayfarer.database import SessionLocal
        session_factory = SessionLocal

    return AppContext(
        settings=settings,
        session_factory=session_factory,
        breakers=CircuitBreakerRegistry(),
        scheduler=StatusSweepScheduler.from_settings(settings, session_factory),
    )


def get_context(request: Request) -> AppContext:
    return request.app.state.context
