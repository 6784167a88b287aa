# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fda_regintel

"""Tests for rebuild scheduling and coalescing."""

import threading
import time
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import patch

import pytest
from conftest import BUILT_AT

from coreason_fda_regintel.exceptions import AcquisitionError, BuildCancelledError
from coreason_fda_regintel.freshness import FreshnessManager
from coreason_fda_regintel.gold.store import Generation, GenerationStore
from coreason_fda_regintel.silver.models import ParsedDataset


class FakeClock:
    """Settable clock."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class CountingRebuild:
    """Rebuild callable that builds from a fixed dataset and counts calls."""

    def __init__(self, store: GenerationStore, dataset: ParsedDataset, delay: float = 0.0) -> None:
        self.store = store
        self.dataset = dataset
        self.delay = delay
        self.calls = 0
        self.fail_with: BaseException | None = None
        self._lock = threading.Lock()

    def __call__(self, cancel: threading.Event) -> Generation:
        with self._lock:
            self.calls += 1
            generation_id = f"rebuild-{self.calls}"
        time.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        return self.store.builder.build(generation_id, self.dataset, cancel=cancel, now=BUILT_AT)


def test_ensure_ready_builds_when_empty(tmp_path: Path, dataset: ParsedDataset) -> None:
    store = GenerationStore(tmp_path)
    rebuild = CountingRebuild(store, dataset)
    manager = FreshnessManager(store, rebuild, clock=FakeClock(BUILT_AT))

    generation = manager.ensure_ready()

    assert rebuild.calls == 1
    assert store.active is generation
    assert manager.ensure_ready() is generation
    assert rebuild.calls == 1


def test_fresh_generation_is_not_rebuilt(store: GenerationStore, dataset: ParsedDataset) -> None:
    rebuild = CountingRebuild(store, dataset)
    manager = FreshnessManager(store, rebuild, clock=FakeClock(BUILT_AT + timedelta(days=29)))

    assert manager.needs_rebuild() is False
    manager.ensure_ready()
    assert rebuild.calls == 0


def test_stale_generation_is_rebuilt(store: GenerationStore, dataset: ParsedDataset) -> None:
    rebuild = CountingRebuild(store, dataset)
    manager = FreshnessManager(store, rebuild, clock=FakeClock(BUILT_AT + timedelta(days=31)))

    generation = manager.ensure_ready()

    assert rebuild.calls == 1
    assert generation.generation_id == "rebuild-1"
    assert store.require_active() is generation


def test_concurrent_callers_share_one_build(tmp_path: Path, dataset: ParsedDataset) -> None:
    """N simultaneous callers on an empty store trigger exactly one build."""
    store = GenerationStore(tmp_path)
    rebuild = CountingRebuild(store, dataset, delay=0.3)
    manager = FreshnessManager(store, rebuild, clock=FakeClock(BUILT_AT))
    barrier = threading.Barrier(8)
    results: list[Generation] = []
    errors: list[Exception] = []

    def caller() -> None:
        barrier.wait()
        try:
            results.append(manager.ensure_ready())
        except Exception as e:  # pragma: no cover
            errors.append(e)

    threads = [threading.Thread(target=caller) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    assert rebuild.calls == 1
    assert len(results) == 8
    assert len({r.generation_id for r in results}) == 1


def test_failure_without_prior_generation_propagates(tmp_path: Path, dataset: ParsedDataset) -> None:
    store = GenerationStore(tmp_path)
    rebuild = CountingRebuild(store, dataset)
    rebuild.fail_with = AcquisitionError("FDA unreachable")
    manager = FreshnessManager(store, rebuild, clock=FakeClock(BUILT_AT))

    with pytest.raises(AcquisitionError, match="unreachable"):
        manager.ensure_ready()
    assert store.active is None


def test_failure_with_prior_generation_keeps_serving(store: GenerationStore, dataset: ParsedDataset) -> None:
    """A failed rebuild is absorbed and retried only after the cooldown."""
    prior = store.require_active()
    clock = FakeClock(BUILT_AT + timedelta(days=40))
    rebuild = CountingRebuild(store, dataset)
    rebuild.fail_with = AcquisitionError("FDA unreachable")
    manager = FreshnessManager(store, rebuild, retry_cooldown=timedelta(hours=1), clock=clock)

    assert manager.ensure_ready() is prior
    assert rebuild.calls == 1
    assert manager.last_failure == clock.now

    # Within the cooldown the stale generation keeps serving without a new attempt
    clock.now += timedelta(minutes=30)
    assert manager.ensure_ready() is prior
    assert rebuild.calls == 1

    # After the cooldown the next call tries again and succeeds
    clock.now += timedelta(minutes=31)
    rebuild.fail_with = None
    fresh = manager.ensure_ready()
    assert rebuild.calls == 2
    assert fresh is not prior
    assert store.require_active() is fresh
    assert manager.last_failure is None


def test_refresh_force_rebuilds_fresh_store(store: GenerationStore, dataset: ParsedDataset) -> None:
    rebuild = CountingRebuild(store, dataset)
    manager = FreshnessManager(store, rebuild, clock=FakeClock(BUILT_AT))

    assert manager.refresh() is store.require_active()
    assert rebuild.calls == 0

    generation = manager.refresh(force=True)
    assert rebuild.calls == 1
    assert store.require_active() is generation


def test_shutdown_cancels_rebuild(tmp_path: Path, dataset: ParsedDataset) -> None:
    store = GenerationStore(tmp_path)
    rebuild = CountingRebuild(store, dataset)
    manager = FreshnessManager(store, rebuild, clock=FakeClock(BUILT_AT))

    manager.shutdown()
    with pytest.raises(BuildCancelledError):
        manager.ensure_ready()
    assert store.active is None
    assert list(tmp_path.glob("generation-*")) == []


@pytest.mark.parametrize("failure", [OSError("No space left on device"), ValueError("bad cell")])
def test_unexpected_rebuild_failure_keeps_serving(
    store: GenerationStore, dataset: ParsedDataset, failure: Exception
) -> None:
    """Any rebuild failure falls back to the prior generation, not only library errors."""
    prior = store.require_active()
    rebuild = CountingRebuild(store, dataset)
    rebuild.fail_with = failure
    manager = FreshnessManager(store, rebuild, clock=FakeClock(BUILT_AT + timedelta(days=40)))

    assert manager.ensure_ready() is prior
    assert manager.last_failure is not None


def test_activation_failure_keeps_serving(store: GenerationStore, dataset: ParsedDataset) -> None:
    """A pointer write that fails leaves the prior generation active and serving."""
    prior = store.require_active()
    rebuild = CountingRebuild(store, dataset)
    manager = FreshnessManager(store, rebuild, clock=FakeClock(BUILT_AT + timedelta(days=40)))

    with patch.object(store, "activate", side_effect=OSError("read-only file system")):
        assert manager.ensure_ready() is prior

    assert rebuild.calls == 1
    assert store.require_active() is prior


def test_unexpected_failure_without_prior_generation_propagates(tmp_path: Path, dataset: ParsedDataset) -> None:
    store = GenerationStore(tmp_path)
    rebuild = CountingRebuild(store, dataset)
    rebuild.fail_with = OSError("No space left on device")
    manager = FreshnessManager(store, rebuild, clock=FakeClock(BUILT_AT))

    with pytest.raises(OSError, match="No space"):
        manager.ensure_ready()


def test_interrupted_rebuild_does_not_block_later_callers(tmp_path: Path, dataset: ParsedDataset) -> None:
    """An interrupt during a rebuild propagates and the next call starts a new build."""
    store = GenerationStore(tmp_path)
    rebuild = CountingRebuild(store, dataset)
    rebuild.fail_with = KeyboardInterrupt()
    manager = FreshnessManager(store, rebuild, clock=FakeClock(BUILT_AT))

    with pytest.raises(KeyboardInterrupt):
        manager.ensure_ready()

    rebuild.fail_with = None
    generation = manager.ensure_ready()
    assert rebuild.calls == 2
    assert store.require_active() is generation
