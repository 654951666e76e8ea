"""
Unit tests for the Adaptive Timing Engine.

Distributional checks use a seeded random.Random and a fixed clock so they
are deterministic.
"""

from __future__ import annotations

import random
from unittest.mock import AsyncMock

import pytest

from slotguard.config import TimingConfig
from slotguard.errors import ValidationError
from slotguard.systems.timing import BACKSPACE, TimingEngine, gaussian, typo_for, variance


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_config(**kwargs) -> TimingConfig:
    # No perturbations unless a test asks for them
    defaults = {
        "distraction_probability": 0.0,
        "rush_probability": 0.0,
        "consistency_probability": 0.0,
        "typo_probability": 0.0,
    }
    return TimingConfig(**{**defaults, **kwargs})


def make_engine(seed: int = 7, clock: FakeClock | None = None, **config) -> TimingEngine:
    return TimingEngine(
        make_config(**config),
        rng=random.Random(seed),
        clock=clock or FakeClock(),
        sleep=AsyncMock(),
    )


# ─── Tests: Pure helpers ──────────────────────────────────────────


class TestHelpers:
    def test_gaussian_moments(self):
        rng = random.Random(1)
        draws = [gaussian(rng, 100.0, 10.0) for _ in range(20_000)]
        mean = sum(draws) / len(draws)
        assert abs(mean - 100.0) < 0.5
        assert abs(variance(draws) ** 0.5 - 10.0) < 0.5

    def test_variance(self):
        assert variance([]) == 0.0
        assert variance([5, 5, 5]) == 0.0
        assert variance([1, 3]) == 1.0

    def test_typo_uses_neighbouring_key(self):
        rng = random.Random(0)
        assert typo_for("a", rng) == "s"
        assert typo_for("P", rng) == "O"

    def test_typo_for_unmapped_character_shifts_by_one(self):
        rng = random.Random(0)
        assert typo_for("5", rng) in {"4", "6"}


# ─── Tests: get_next_interval ─────────────────────────────────────


class TestNextInterval:
    def test_click_draws_stay_in_bounds_and_centre_on_mean(self):
        engine = make_engine()
        draws = [engine.get_next_interval("click") for _ in range(10_000)]

        assert min(draws) >= 1200
        assert max(draws) <= 3500
        mean = sum(draws) / len(draws)
        assert abs(mean - 2200) < 60

    @pytest.mark.parametrize("action_type", ["search", "click", "type", "scroll", "pause"])
    def test_bounds_hold_with_perturbations(self, action_type):
        engine = TimingEngine(TimingConfig(), rng=random.Random(3), clock=FakeClock())
        pattern = TimingConfig().base_patterns[action_type]
        for _ in range(2000):
            value = engine.get_next_interval(action_type, {"careful": True})
            assert pattern.min <= value <= pattern.max
            assert isinstance(value, int)

    def test_unknown_action_type(self):
        with pytest.raises(ValidationError, match="Unknown timing type: hover"):
            make_engine().get_next_interval("hover")

    def test_context_flags_shift_the_distribution(self):
        careful = make_engine(seed=11)
        stressed = make_engine(seed=11)
        careful_mean = sum(careful.get_next_interval("pause", {"careful": True}) for _ in range(500)) / 500
        stressed_mean = sum(stressed.get_next_interval("pause", {"stress": True}) for _ in range(500)) / 500
        assert careful_mean > stressed_mean

    def test_fatigue_grows_and_caps(self):
        clock = FakeClock()
        engine = make_engine(clock=clock)

        clock.now += 2 * 3600
        engine.get_next_interval("click")
        assert engine.get_stats()["fatigue_factor"] == pytest.approx(1.2)

        clock.now += 20 * 3600
        engine.get_next_interval("click")
        assert engine.get_stats()["fatigue_factor"] == pytest.approx(1.5)

    def test_history_is_bounded(self):
        engine = make_engine(max_history=5)
        for _ in range(12):
            engine.get_next_interval("type")
        assert engine.get_stats()["history_length"] == 5

    def test_low_variance_triggers_adaptive_multiplier(self):
        # Bounds collapsed to one value: every draw is identical
        engine = make_engine(
            base_patterns={"click": {"min": 1000, "max": 1000, "mean": 1000}},
        )
        for _ in range(5):
            engine.get_next_interval("click")
        multiplier = engine.get_stats()["adaptive_multiplier"]
        assert 0.85 <= multiplier <= 1.15

    @pytest.mark.asyncio
    async def test_wait_sleeps_for_the_interval(self):
        engine = make_engine()
        interval = await engine.wait("click")
        engine._sleep.assert_awaited_once_with(interval / 1000)


# ─── Tests: Typing ────────────────────────────────────────────────


class TestTyping:
    def test_pattern_without_typos_replays_text(self):
        engine = make_engine()
        pattern = engine.generate_typing_pattern("LS1 1AA")
        assert "".join(k.char for k in pattern) == "LS1 1AA"
        assert all(k.delay_ms >= 50 for k in pattern)

    def test_typos_are_corrected(self):
        engine = make_engine(typo_probability=1.0)
        pattern = engine.generate_typing_pattern("asdf")

        # First character never gets a typo; the other three each add two keystrokes
        assert len(pattern) == 4 + 3 * 2
        assert pattern[0].char == "a"
        assert [k.char for k in pattern[1:4]] == ["a", BACKSPACE, "s"]

        typed: list[str] = []
        for keystroke in pattern:
            if keystroke.char == BACKSPACE:
                typed.pop()
            else:
                typed.append(keystroke.char)
        assert "".join(typed) == "asdf"

    @pytest.mark.asyncio
    async def test_simulate_human_typing_presses_every_key(self):
        engine = make_engine()
        sink = AsyncMock()

        pattern = await engine.simulate_human_typing(sink, "abc")

        assert [c.args[0] for c in sink.press.await_args_list] == ["a", "b", "c"]
        assert engine._sleep.await_count == len(pattern)


# ─── Tests: Stats and reset ───────────────────────────────────────


class TestStats:
    def test_per_type_stats(self):
        engine = make_engine()
        for _ in range(3):
            engine.get_next_interval("click")
        engine.get_next_interval("scroll")

        stats = engine.get_stats()["stats"]
        assert stats["click"]["count"] == 3
        assert stats["scroll"]["count"] == 1
        assert stats["scroll"]["variance"] == 0.0

    def test_reset(self):
        clock = FakeClock()
        engine = make_engine(clock=clock)
        clock.now += 3600
        engine.get_next_interval("click")

        engine.reset()

        stats = engine.get_stats()
        assert stats["history_length"] == 0
        assert stats["adaptive_multiplier"] == 1.0
        assert stats["fatigue_factor"] == 1.0
        assert stats["session_duration_ms"] == 0
