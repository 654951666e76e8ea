"""
SlotGuard — consent-gated booking automation core.

Public interface:
  build_core          — composition root wiring every component
  create_core         — load config, set up logging, then build_core
  SlotGuardCore       — the wired components
  load_config         — YAML + env configuration loader
"""

from slotguard.config import SlotGuardConfig, load_config
from slotguard.main import SlotGuardCore, build_core, create_core

__all__ = [
    "SlotGuardConfig",
    "SlotGuardCore",
    "build_core",
    "create_core",
    "load_config",
]
