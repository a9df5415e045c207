"""Uplink selector.

Runs on the relay router. Each run scans the candidate uplinks, points the
relay at the active one, lights its indicator and restarts the relay when
needed.
"""

from openwrt_relay.uplink.service import (
    SelectorBusyError,
    SelectorError,
    preview_selector,
    run_selector,
)

__all__ = [
    "SelectorBusyError",
    "SelectorError",
    "preview_selector",
    "run_selector",
]
