"""Uplink selector service.

This module provides the selector entry point:
- run_selector(): one locked, run-to-completion selector pass
- gather_observations(): read host state into an Observations snapshot
- apply_plan(): commit staged options and switch indicators

Runs are triggered by cron and by interface hotplug events. A non-blocking
file lock makes overlapping runs skip instead of queueing.
"""

from __future__ import annotations

import fcntl
import logging
import os
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from openwrt_relay.config import get_settings
from openwrt_relay.profiles.io import load_active_profile
from openwrt_relay.types import SelectorOutcome, UplinkKind
from openwrt_relay.uplink.decision import (
    needs_restart,
    plan_changes,
    relay_command_pattern,
    usb_indicator,
)
from openwrt_relay.uplink.host import HostCommandError, HostFacilities
from openwrt_relay.uplink.models import (
    RELAY_IPADDR,
    RELAY_NETWORK,
    Candidate,
    Observations,
    RelayConfig,
    SelectorPlan,
    SelectorReport,
    candidates_from_profile,
)

if TYPE_CHECKING:
    from openwrt_relay.config import Settings
    from openwrt_relay.profiles.schema import ProfileSchema

logger = logging.getLogger(__name__)

UCI_CONFIG = "network"


class SelectorError(Exception):
    """Raised when a selector run cannot complete."""

    def __init__(self, message: str, code: str = "selector_error") -> None:
        super().__init__(message)
        self.code = code


class SelectorBusyError(SelectorError):
    """Raised when another selector run holds the lock."""

    def __init__(self, lock_file: Path) -> None:
        super().__init__(
            f"Another uplink selector run holds {lock_file}", code="selector_busy"
        )
        self.lock_file = lock_file


@contextmanager
def selector_lock(lock_file: Path) -> Iterator[None]:
    """Hold an exclusive lock on ``lock_file`` without waiting.

    Args:
        lock_file: Path of the lock file.

    Yields:
        None while the lock is held.

    Raises:
        SelectorBusyError: If the lock is held by another process.
    """
    lock_file.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o600)
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            raise SelectorBusyError(lock_file) from None
        logger.debug("Selector lock acquired: %s", lock_file)
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            logger.debug("Selector lock released: %s", lock_file)
    finally:
        os.close(fd)


def _relay_key(settings: Settings, option: str) -> str:
    return f"{UCI_CONFIG}.{settings.relay_section}.{option}"


def gather_observations(
    host: HostFacilities,
    candidates: Sequence[Candidate],
    known_indicators: Sequence[str],
    settings: Settings,
    fallback: str,
) -> Observations:
    """Read the persisted relay config and live host state.

    Besides the known indicators, the indicator of every detected USB
    candidate is read, so a port missing from the profile still reads as on
    once it is lit.

    Raises:
        SelectorError: If a host command cannot run.
    """
    try:
        return _read_host(host, candidates, known_indicators, settings, fallback)
    except HostCommandError as e:
        raise SelectorError(str(e), code=e.code) from e


def _read_host(
    host: HostFacilities,
    candidates: Sequence[Candidate],
    known_indicators: Sequence[str],
    settings: Settings,
    fallback: str,
) -> Observations:
    relay = RelayConfig.from_uci(
        host.store.get(_relay_key(settings, RELAY_IPADDR)),
        host.store.get(_relay_key(settings, RELAY_NETWORK)),
    )
    addresses = {
        c.interface: host.interfaces.get_address(c.interface) for c in candidates
    }

    usb_ports: dict[str, int | None] = {}
    names = list(known_indicators)
    for candidate in candidates:
        if candidate.kind == UplinkKind.USB and candidate.driver:
            # Only USB candidates that are up need their port
            if addresses.get(candidate.interface):
                port = host.kernel_log.find_last_usb_port(candidate.driver)
                usb_ports[candidate.driver] = port
                names.append(usb_indicator(port, fallback))

    indicators: dict[str, bool | None] = {}
    for name in dict.fromkeys(names):
        indicators[name] = host.leds.is_on(name) if host.leds.exists(name) else None
    return Observations(
        relay=relay,
        addresses=addresses,
        usb_ports=usb_ports,
        indicators=indicators,
    )


def apply_plan(host: HostFacilities, plan: SelectorPlan, settings: Settings) -> bool:
    """Apply indicator changes and commit staged relay options.

    Args:
        host: Host facilities.
        plan: Plan computed by plan_changes().
        settings: Settings naming the relay section.

    Returns:
        True if a commit was made.

    Raises:
        SelectorError: If the store rejects the change.
    """
    for name in plan.indicators_off:
        host.leds.set(name, False)
    if plan.indicator_on is not None:
        host.leds.set(plan.indicator_on, True)
        logger.info("Indicator %s on", plan.indicator_on)

    if not plan.dirty:
        return False

    try:
        for option, value in plan.staged.items():
            host.store.set(_relay_key(settings, option), value)
        host.store.commit(UCI_CONFIG)
    except HostCommandError as e:
        raise SelectorError(str(e), code=e.code) from e
    logger.info(
        "Committed relay configuration: %s", plan.staged or "no option changes"
    )
    return True


def preview_selector(
    settings: Settings,
    profile: ProfileSchema,
    host: HostFacilities | None = None,
) -> tuple[Observations, SelectorPlan]:
    """Compute the plan of a run without taking the lock or applying it."""
    if host is None:
        host = HostFacilities.from_settings(settings, profile)
    candidates = candidates_from_profile(profile)
    known_indicators = profile.known_indicators()
    observations = gather_observations(
        host,
        candidates,
        known_indicators,
        settings,
        fallback=profile.usb_indicator_fallback,
    )
    plan = plan_changes(
        observations,
        candidates,
        lan_network=settings.lan_network,
        known_indicators=known_indicators,
        fallback=profile.usb_indicator_fallback,
    )
    return observations, plan


def run_selector(
    settings: Settings | None = None,
    profile: ProfileSchema | None = None,
    host: HostFacilities | None = None,
) -> SelectorReport:
    """Run one selector pass.

    Args:
        settings: Settings; loaded from the environment if not provided.
        profile: Device profile; the active profile if not provided.
        host: Host facilities; real OpenWrt facilities if not provided.

    Returns:
        SelectorReport describing what happened.

    Raises:
        SelectorError: If reading the host, committing or restarting fails.
    """
    if settings is None:
        settings = get_settings()
    if profile is None:
        profile = load_active_profile(settings)
    if host is None:
        host = HostFacilities.from_settings(settings, profile)

    try:
        with selector_lock(settings.lock_file):
            return _run_locked(settings, profile, host)
    except SelectorBusyError as e:
        logger.warning("%s, skipping this run", e)
        return SelectorReport(outcome=SelectorOutcome.SKIPPED, message=str(e))


def _run_locked(
    settings: Settings,
    profile: ProfileSchema,
    host: HostFacilities,
) -> SelectorReport:
    _, plan = preview_selector(settings, profile, host)

    if plan.selection is None:
        # Keep the last known configuration in place
        logger.warning("No uplink detected, keeping current relay configuration")
        return SelectorReport(
            outcome=SelectorOutcome.NO_UPLINK,
            plan=plan,
            message="no uplink detected",
        )

    committed = apply_plan(host, plan, settings)

    pattern = relay_command_pattern(settings.relay_process, plan.selection.interface)
    try:
        relay_running = host.processes.is_running(pattern)
    except HostCommandError as e:
        raise SelectorError(str(e), code=e.code) from e
    if not relay_running:
        logger.info(
            "%s not running on %s", settings.relay_process, plan.selection.interface
        )

    restarted = False
    if needs_restart(plan, relay_running):
        logger.info("Restarting relay via %s", settings.relay_service)
        try:
            host.processes.restart(settings.relay_service)
        except HostCommandError as e:
            raise SelectorError(str(e), code=e.code) from e
        restarted = True

    outcome = SelectorOutcome.UNCHANGED
    if committed or restarted:
        outcome = SelectorOutcome.SWITCHED
    return SelectorReport(
        outcome=outcome,
        plan=plan,
        committed=committed,
        restarted=restarted,
        message=f"{plan.selection.uplink_id} via {plan.selection.interface}",
    )


__all__ = [
    "SelectorBusyError",
    "SelectorError",
    "apply_plan",
    "gather_observations",
    "preview_selector",
    "run_selector",
    "selector_lock",
]
