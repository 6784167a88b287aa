# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fda_regintel

"""Keeps the active generation younger than the freshness window."""

import threading
from collections.abc import Callable
from concurrent.futures import Future
from datetime import datetime, timedelta, timezone
from typing import Optional

from coreason_fda_regintel.config import RegIntelConfig
from coreason_fda_regintel.gold.store import Generation, GenerationStore
from coreason_fda_regintel.utils.logger import logger


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FreshnessManager:
    """
    Decides when to rebuild and coalesces concurrent rebuild requests.

    At most one rebuild runs per manager. Callers arriving while it runs wait
    for that same build instead of starting their own. A failed rebuild never
    displaces a working generation; it only delays the next attempt by
    ``retry_cooldown``.
    """

    def __init__(
        self,
        store: GenerationStore,
        rebuild: Callable[[threading.Event], Generation],
        max_age: timedelta = RegIntelConfig.MAX_AGE,
        retry_cooldown: timedelta = RegIntelConfig.RETRY_COOLDOWN,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """
        Initialize the manager.

        Args:
            store: The store whose active generation is kept fresh.
            rebuild: Builds (but does not activate) a generation; receives the cancel event.
            max_age: Generations older than this are rebuilt.
            retry_cooldown: Minimum wait after a failed rebuild while an older generation still serves.
            clock: Returns the current UTC time; defaults to the system clock.
        """
        self.store = store
        self.rebuild = rebuild
        self.max_age = max_age
        self.retry_cooldown = retry_cooldown
        self.clock = clock or _utc_now
        self._lock = threading.Lock()
        self._in_flight: Optional[Future[Generation]] = None
        self._last_failure: Optional[datetime] = None
        self._cancel = threading.Event()

    @property
    def last_failure(self) -> Optional[datetime]:
        return self._last_failure

    def needs_rebuild(self) -> bool:
        active = self.store.active
        if active is None:
            return True
        now = self.clock()
        if not active.metadata.is_stale(self.max_age, now):
            return False
        if self._last_failure is not None and now - self._last_failure < self.retry_cooldown:
            logger.debug("Active generation is stale but a recent rebuild failed; still in cooldown")
            return False
        return True

    def ensure_ready(self) -> Generation:
        """
        Make sure a fresh-enough generation is active.

        Returns:
            The active generation.

        Raises:
            Exception: The rebuild failure, only when no prior generation exists.
        """
        if not self.needs_rebuild():
            return self.store.require_active()
        return self._run(force=False)

    def refresh(self, force: bool = False) -> Generation:
        """Rebuild now if stale, or unconditionally with ``force``."""
        if not force:
            return self.ensure_ready()
        return self._run(force=True)

    def shutdown(self) -> None:
        """Ask an in-flight rebuild to stop at its next stage boundary."""
        logger.info("Shutdown requested; cancelling any in-flight rebuild")
        self._cancel.set()

    def _run(self, force: bool) -> Generation:
        with self._lock:
            future = self._in_flight
            owner = future is None
            if owner:
                # Another caller may have finished a rebuild while we waited for the lock
                if not force and not self.needs_rebuild():
                    return self.store.require_active()
                future = Future()
                self._in_flight = future

        if owner:
            self._build_into(future)
        else:
            logger.debug("Joining in-flight rebuild")
        return self._await(future)

    def _build_into(self, future: "Future[Generation]") -> None:
        logger.info("Rebuilding the regulatory store")
        try:
            generation = self.rebuild(self._cancel)
            self.store.activate(generation)
        except BaseException as e:
            self._last_failure = self.clock()
            future.set_exception(e)
            if not isinstance(e, Exception):
                raise
        else:
            self._last_failure = None
            future.set_result(generation)
        finally:
            with self._lock:
                self._in_flight = None

    def _await(self, future: "Future[Generation]") -> Generation:
        try:
            return future.result()
        except Exception as e:
            prior = self.store.active
            if prior is None:
                logger.error(f"Rebuild failed and no generation is available: {e!r}")
                raise
            logger.warning(f"Rebuild failed, still serving generation {prior.generation_id}: {e!r}")
            return prior
