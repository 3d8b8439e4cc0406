"""Intent-to-router registry."""

import logging
from collections.abc import Mapping

from .base import BaseRouter

logger = logging.getLogger(__name__)


class RouterRegistry:
    """Explicit mapping from top-level intent to domain router.

    Routers are registered by name when the application is wired; there
    is no discovery. Lookups are exact and case-sensitive.

    Example:
        registry = RouterRegistry({"Storage": storage_router})
        router = registry.lookup("Storage")
    """

    def __init__(self, routers: Mapping[str, BaseRouter] | None = None):
        self._routers: dict[str, BaseRouter] = dict(routers or {})

    def register(self, router: BaseRouter, intent: str | None = None) -> None:
        """Register a router under an intent (default: the router's name)."""
        key = intent or router.name
        if key in self._routers:
            logger.warning(f"Replacing router registered for intent {key}")
        self._routers[key] = router

    def lookup(self, intent: str | None) -> BaseRouter | None:
        """Router registered for an intent, or None if there is none."""
        if intent is None:
            return None
        return self._routers.get(intent)

    def __contains__(self, intent: object) -> bool:
        return intent in self._routers

    @property
    def intents(self) -> list[str]:
        return sorted(self._routers)
