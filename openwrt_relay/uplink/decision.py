"""Pure decision logic of the uplink selector.

Given a snapshot of observations, decide which uplink is active, which
relay options change, and which indicators to switch. Nothing in this
module touches the host.

Candidates are scanned in their fixed order and every hit replaces the
previous one, so the last candidate with an address wins. With the default
profile this means a tethered phone outranks Wi-Fi.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from openwrt_relay.types import UplinkKind
from openwrt_relay.uplink.models import (
    RELAY_IPADDR,
    RELAY_NETWORK,
    Candidate,
    Observations,
    Selection,
    SelectorPlan,
)

logger = logging.getLogger(__name__)


def usb_indicator(port: int | None, fallback: str) -> str:
    """Return the indicator of a USB port, or the fallback if unknown."""
    if port is None:
        return fallback
    return f"usb{port}"


def resolve_indicator(
    candidate: Candidate,
    usb_ports: dict[str, int | None],
    fallback: str,
) -> str:
    """Return the indicator to light for a candidate.

    Wi-Fi candidates carry a fixed indicator. USB candidates map to the port
    the kernel last registered their driver on; when the log has no such
    record the fallback indicator is used.
    """
    if candidate.kind == UplinkKind.WIFI and candidate.indicator:
        return candidate.indicator

    port = usb_ports.get(candidate.driver or "")
    if port is None:
        logger.warning(
            "No USB port found for %s (%s), using indicator %s",
            candidate.uplink_id,
            candidate.driver,
            fallback,
        )
    return usb_indicator(port, fallback)


def pick_uplink(
    candidates: Sequence[Candidate],
    addresses: dict[str, str | None],
    usb_ports: dict[str, int | None],
    fallback: str,
) -> Selection | None:
    """Scan every candidate in order; the last one with an address wins.

    Args:
        candidates: Candidates in fixed scan order.
        addresses: IPv4 address per interface.
        usb_ports: USB port per driver tag.
        fallback: Indicator for USB candidates with an unknown port.

    Returns:
        Final selection, or None if no candidate has an address.
    """
    selection: Selection | None = None
    for candidate in candidates:
        address = addresses.get(candidate.interface)
        if not address:
            logger.info("%s not detected", candidate.uplink_id)
            continue
        logger.info(
            "%s detected on %s with %s",
            candidate.uplink_id,
            candidate.interface,
            address,
        )
        selection = Selection(
            candidate=candidate,
            address=address,
            indicator=resolve_indicator(candidate, usb_ports, fallback),
        )
    return selection


def plan_changes(
    observations: Observations,
    candidates: Sequence[Candidate],
    lan_network: str,
    known_indicators: Sequence[str],
    fallback: str,
) -> SelectorPlan:
    """Compute the changes a run should make.

    An indicator without an LED device is never switched on and so never
    makes the plan dirty.

    Args:
        observations: Host snapshot.
        candidates: Candidates in fixed scan order.
        lan_network: LAN network always bridged by the relay.
        known_indicators: Every uplink indicator.
        fallback: Indicator for USB candidates with an unknown port.

    Returns:
        SelectorPlan. With no selection the plan is empty.
    """
    selection = pick_uplink(
        candidates, observations.addresses, observations.usb_ports, fallback
    )
    if selection is None:
        return SelectorPlan(selection=None)

    relay = observations.relay
    staged: dict[str, str] = {}

    if selection.address != relay.ipaddr:
        logger.info("Relay address %s -> %s", relay.ipaddr, selection.address)
        staged[RELAY_IPADDR] = selection.address

    if selection.uplink_id != relay.uplink_id:
        logger.info("Relay uplink %s -> %s", relay.uplink_id, selection.uplink_id)
        staged[RELAY_NETWORK] = f"{lan_network} {selection.uplink_id}"

    indicator_on: str | None = None
    indicators_off: tuple[str, ...] = ()
    others = [
        name
        for name in dict.fromkeys([*known_indicators, *observations.indicators])
        if name != selection.indicator
        and observations.indicators.get(name) is not None
    ]
    state = observations.indicators.get(selection.indicator)
    if state is None:
        # Nothing to light, so the indicator cannot make the run dirty
        logger.warning(
            "Indicator %s has no LED device, not switching it on",
            selection.indicator,
        )
        indicators_off = tuple(n for n in others if observations.indicators[n])
    elif not state:
        indicator_on = selection.indicator
        indicators_off = tuple(others)

    return SelectorPlan(
        selection=selection,
        staged=staged,
        indicator_on=indicator_on,
        indicators_off=indicators_off,
    )


def relay_command_pattern(process: str, interface: str) -> str:
    """Return the pgrep -f pattern of a relay bound to ``interface``."""
    return f"{process} .*-I {interface}( |$)"


def needs_restart(plan: SelectorPlan, relay_running: bool) -> bool:
    """Return True if the relay process must be restarted.

    A dirty plan always restarts. A clean plan still restarts when the relay
    is not running against the selected interface.
    """
    if plan.selection is None:
        return False
    return plan.dirty or not relay_running


__all__ = [
    "needs_restart",
    "pick_uplink",
    "plan_changes",
    "relay_command_pattern",
    "resolve_indicator",
    "usb_indicator",
]
