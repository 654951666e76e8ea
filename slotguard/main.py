"""
SlotGuard — Composition Root

Builds one instance of every component and wires them by constructor
injection. There are no module-level singletons: each SlotGuardCore is
independent, so tests and concurrent monitoring cycles never share state.

    config = load_config("config/default.yaml")
    core = build_core(config, notifier=my_notifier, pointer=my_driver)
    attempt = await core.orchestrator.attempt_booking(core.state_machine, details, book)
"""

from __future__ import annotations

import asyncio
import os
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from slotguard.config import SlotGuardConfig, load_config
from slotguard.primitives.common import wall_clock
from slotguard.systems.booking import BookingOrchestrator, BookingReporter, BookingStateMachine
from slotguard.systems.consent import ConfirmationGate, Notifier
from slotguard.systems.lock import KeyedLock
from slotguard.systems.stealth import (
    BezierMouseSimulator,
    DetectionEvasion,
    HeadlessPointer,
    HeuristicDetectionEvasion,
    MouseSimulator,
    PointerDriver,
    StealthCoordinator,
)
from slotguard.systems.timing import TimingEngine
from slotguard.systems.validation import InputValidator
from slotguard.telemetry.logging import setup_logging

logger = structlog.get_logger()


@dataclass
class SlotGuardCore:
    config: SlotGuardConfig
    lock: KeyedLock
    validator: InputValidator
    gate: ConfirmationGate
    state_machine: BookingStateMachine
    timing: TimingEngine
    coordinator: StealthCoordinator
    orchestrator: BookingOrchestrator

    def emergency_stop(self, reason: str = "emergency_stop") -> int:
        """
        Drop every queued booking attempt, then force the state machine to
        IDLE. An attempt already holding the lock finds its session gone and
        never runs its booking action. Returns the number of dropped attempts.
        """
        dropped = self.lock.clear()
        self.state_machine.emergency_stop(reason)
        logger.warning("slotguard_emergency_stop", reason=reason, dropped_attempts=dropped)
        return dropped

    async def shutdown(self) -> None:
        """Drop queued attempts, stop any BOOKING deadline and flush pending reports."""
        if self.state_machine.is_booking_in_progress():
            self.emergency_stop("shutdown")
        else:
            self.lock.clear()
        await self.state_machine.drain_reports()
        logger.info("slotguard_stopped", instance_id=self.config.instance_id)


def build_core(
    config: SlotGuardConfig,
    *,
    notifier: Notifier,
    reporter: BookingReporter | None = None,
    detection: DetectionEvasion | None = None,
    mouse: MouseSimulator | None = None,
    pointer: PointerDriver | None = None,
    rng: random.Random | None = None,
    clock: Callable[[], float] = wall_clock,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> SlotGuardCore:
    rng = rng or random.Random()

    timing = TimingEngine(config.timing, rng=rng, clock=clock, sleep=sleep)
    if mouse is None:
        mouse = BezierMouseSimulator(pointer or HeadlessPointer(), timing, rng=rng, sleep=sleep)
    coordinator = StealthCoordinator(
        config.stealth,
        timing=timing,
        detection=detection or HeuristicDetectionEvasion(clock=clock),
        mouse=mouse,
        clock=clock,
        sleep=sleep,
        rng=rng,
    )

    lock = KeyedLock()
    gate = ConfirmationGate(notifier, config.consent, clock=clock)
    core = SlotGuardCore(
        config=config,
        lock=lock,
        validator=InputValidator(config.validation, clock=clock),
        gate=gate,
        state_machine=BookingStateMachine(config.booking, reporter=reporter, clock=clock),
        timing=timing,
        coordinator=coordinator,
        orchestrator=BookingOrchestrator(lock, gate, coordinator),
    )
    logger.info(
        "slotguard_core_built",
        instance_id=config.instance_id,
        stealth_level=config.stealth.stealth_level.value,
    )
    return core


def create_core(
    config_path: str | Path | None = None,
    **kwargs: Any,
) -> SlotGuardCore:
    """Load config (``SLOTGUARD_CONFIG_PATH`` or the default file), set up logging, build."""
    path = config_path or os.environ.get("SLOTGUARD_CONFIG_PATH", "config/default.yaml")
    config = load_config(path)
    setup_logging(config.logging, instance_id=config.instance_id)
    logger.info("slotguard_starting", instance_id=config.instance_id, config_path=str(path))
    return build_core(config, **kwargs)
