"""Lifecycle registry for ordered startup and shutdown.

Hooks are registered by name. A function whose name starts with
``shutdown`` (or ends with ``_shutdown``) is the shutdown half of the pair;
anything else is the startup half. Startup runs in dependency order, ties
broken by ``startup_order``. Shutdown runs the started hooks in exactly the
reverse of the order they started.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable  # noqa: TC003
import logging
from typing import Any

logger = logging.getLogger(__name__)

Hook = Callable[..., Awaitable[None]]


class LifecycleHook:
    """A startup or shutdown hook with its ordering metadata."""

    def __init__(self, name: str, func: Hook, order: int, requires: list[str]) -> None:
        self.name = name
        self.func = func
        self.startup_order = order
        self.requires = requires

    async def execute(self, **kwargs: Any) -> None:
        await self.func(**kwargs)


class LifecycleRegistry:
    """Registry of application lifecycle hooks.

    Every hook receives the same keyword arguments (the settings bundle plus
    ``app``) and must accept ``**kwargs`` for the ones it ignores.

    Example:
        registry = LifecycleRegistry()

        @registry.register(name="database", startup_order=10, requires=["core"])
        async def startup_database(db_settings: DatabaseSettings, **kwargs: object) -> None:
            await init_database()

        @registry.register(name="database")
        async def shutdown_database(**kwargs: object) -> None:
            await close_database()

        await registry.startup(app=app, **settings.as_hook_kwargs())
        ...
        await registry.shutdown(app=app, **settings.as_hook_kwargs())
    """

    def __init__(self) -> None:
        self._startup_hooks: dict[str, LifecycleHook] = {}
        self._shutdown_hooks: dict[str, LifecycleHook] = {}
        self._started: list[str] = []

    def register(
        self,
        name: str,
        startup_order: int = 50,
        requires: list[str] | None = None,
    ) -> Callable[[Hook], Hook]:
        """Register the startup or shutdown half of a named hook.

        Raises:
            ValueError: If the same half is registered twice for one name
        """
        requires_list = requires or []

        def decorator(func: Hook) -> Hook:
            func_name = func.__name__.lower()
            is_shutdown = func_name.startswith("shutdown") or func_name.endswith("_shutdown")
            hooks = self._shutdown_hooks if is_shutdown else self._startup_hooks
            if name in hooks:
                kind = "Shutdown" if is_shutdown else "Startup"
                msg = f"{kind} hook '{name}' already registered"
                raise ValueError(msg)
            hooks[name] = LifecycleHook(name=name, func=func, order=startup_order, requires=requires_list)
            return func

        return decorator

    def resolve_startup_order(self) -> list[str]:
        """Topologically sort startup hooks.

        Raises:
            ValueError: On a missing or circular dependency
        """
        for name, hook in self._startup_hooks.items():
            for dep in hook.requires:
                if dep not in self._startup_hooks:
                    msg = f"Hook '{name}' requires '{dep}' but it's not registered"
                    raise ValueError(msg)

        ordered: list[str] = []
        remaining = set(self._startup_hooks)
        while remaining:
            ready = sorted(
                (n for n in remaining if all(dep in ordered for dep in self._startup_hooks[n].requires)),
                key=lambda n: (self._startup_hooks[n].startup_order, n),
            )
            if not ready:
                msg = f"Circular dependency detected among: {', '.join(sorted(remaining))}"
                raise ValueError(msg)
            ordered.append(ready[0])
            remaining.discard(ready[0])
        return ordered

    async def startup(self, **kwargs: Any) -> None:
        """Run startup hooks in order. A failing hook aborts startup."""
        self._started.clear()
        for name in self.resolve_startup_order():
            hook = self._startup_hooks[name]
            try:
                logger.debug("Starting %s...", name)
                await hook.execute(**kwargs)
            except Exception:
                logger.exception("Failed to start %s", name)
                raise
            self._started.append(name)
            logger.debug("Started %s", name)

    async def shutdown(self, **kwargs: Any) -> None:
        """Run shutdown hooks of started components, newest first.

        Errors are logged and the remaining hooks still run.
        """
        for name in reversed(self._started):
            hook = self._shutdown_hooks.get(name)
            if hook is None:
                continue
            try:
                logger.debug("Shutting down %s...", name)
                await hook.execute(**kwargs)
                logger.debug("Shut down %s", name)
            except Exception:
                logger.warning("Error shutting down %s", name, exc_info=True)
        self._started.clear()

    @property
    def started(self) -> list[str]:
        return list(self._started)

    def clear(self) -> None:
        """Forget every hook (tests)."""
        self._startup_hooks.clear()
        self._shutdown_hooks.clear()
        self._started.clear()


lifespan_registry = LifecycleRegistry()

__all__ = ["LifecycleHook", "LifecycleRegistry", "lifespan_registry"]
