"""
The long-lived spell book context.

``Core`` owns every piece of module-wide state: the document store, the
settings and flag facades, the preload cache, per-actor caches and locks,
and the concurrency limit for bulk UUID lookups. Services receive the
context at construction and never reach for process globals.

Usage:
    async with Core(store) as core:
        await core.preparation.save(actor_id, "wizard", desired)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from .constants import MODULE_VERSION, UUID_LOOKUP_CONCURRENCY
from .loadouts import LoadoutManager
from .models import Actor
from .notifications import ChangeNotifier
from .party import PartyAggregator
from .preparation.cantrips import CantripEngine
from .preparation.engine import PreparationEngine
from .preparation.rituals import RitualManager
from .preparation.state import PreparationStateStore
from .rules import RuleSetRegistry
from .settings import SettingKey, Settings
from .spells.custom_lists import CustomListManager
from .spells.index import SpellIndex
from .spells.lists import SpellListResolver
from .spells.preloader import SpellDataPreloader
from .spells.progression import ProgressionCalculator
from .store.base import DocumentStore
from .store.flags import ActorFlags
from .userdata.store import UserSpellData
from .userdata.usage import UsageTracker
from .wizard import ScrollScanner, WizardSpellbook

logger = logging.getLogger("spell-book")

# loggingLevel setting -> logger level; 0 silences the module
_LOG_LEVELS = {
    0: logging.CRITICAL + 1,
    1: logging.ERROR,
    2: logging.WARNING,
    3: logging.DEBUG,
}


def configure_logging(level: int) -> None:
    """Apply the ``loggingLevel`` setting to the module logger hierarchy."""
    level = max(0, min(3, int(level)))
    root = logging.getLogger("spell-book")
    root.setLevel(_LOG_LEVELS[level])
    root.disabled = level == 0


class Core:
    """Spell book context: store, settings, caches and services."""

    def __init__(
        self,
        store: DocumentStore,
        version: str = MODULE_VERSION,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.version = version
        self.clock = clock
        self.flags = ActorFlags(store)
        self.settings = Settings(store)
        self.lookup_semaphore = asyncio.Semaphore(UUID_LOOKUP_CONCURRENCY)
        self._actor_locks: dict[str, asyncio.Lock] = {}
        self._started = False

        self.preloader = SpellDataPreloader(self)
        self.index = SpellIndex(self)
        self.progression = ProgressionCalculator(self)
        self.rules = RuleSetRegistry(self)
        self.resolver = SpellListResolver(self)
        self.custom_lists = CustomListManager(self)
        self.state = PreparationStateStore(self)
        self.cantrips = CantripEngine(self)
        self.rituals = RitualManager(self)
        self.preparation = PreparationEngine(self)
        self.wizard = WizardSpellbook(self)
        self.scrolls = ScrollScanner(self)
        self.party = PartyAggregator(self)
        self.user_data = UserSpellData(self)
        self.usage = UsageTracker(self)
        self.loadouts = LoadoutManager(self)
        self.notifier = ChangeNotifier(self)

    # -----------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------

    async def start(self) -> None:
        """Apply the logging setting. Safe to call more than once."""
        configure_logging(await self.settings.get(SettingKey.LOGGING_LEVEL))
        self._started = True
        logger.debug(f"Spell book core {self.version} started")

    async def dispose(self) -> None:
        """Drop every cache held by the context."""
        self.preloader.invalidate()
        self.rules.clear_cache()
        self.cantrips.clear_cache()
        self.wizard.clear_cache()
        self.user_data.clear_cache()
        self.loadouts.clear_cache()
        self.usage.clear_cache()
        self._actor_locks.clear()
        self._started = False
        logger.debug("Spell book core disposed")

    async def __aenter__(self) -> "Core":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.dispose()

    # -----------------------------------------------------------------
    # Shared helpers
    # -----------------------------------------------------------------

    def actor_lock(self, actor_id: str) -> asyncio.Lock:
        """Lock serializing writes against one actor."""
        lock = self._actor_locks.get(actor_id)
        if lock is None:
            lock = asyncio.Lock()
            self._actor_locks[actor_id] = lock
        return lock

    async def get_actor(self, actor_id: str) -> Actor | None:
        actor = await self.store.get_actor(actor_id)
        if actor is None:
            logger.info(f"Actor {actor_id} not found")
        return actor

    def clear_actor_caches(self, actor_id: str) -> None:
        self.cantrips.clear_cache(actor_id)
        self.wizard.clear_cache(actor_id)
        self.rules.clear_cache(actor_id)

    def now_ms(self) -> float:
        return self.clock() * 1000
