"""Data model of the uplink selector.

Everything here is an immutable value: observations are snapshots of the
host taken at the start of a run, and the plan is the decision computed
from them. Side effects happen only in ``uplink.service``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from openwrt_relay.types import SelectorOutcome, UplinkKind

if TYPE_CHECKING:
    from openwrt_relay.profiles.schema import ProfileSchema

# UCI option names of the relay interface
RELAY_IPADDR = "ipaddr"
RELAY_NETWORK = "network"


@dataclass(frozen=True)
class Candidate:
    """One candidate uplink, in the fixed scan order."""

    uplink_id: str
    kind: UplinkKind
    interface: str
    indicator: str | None = None
    driver: str | None = None


@dataclass(frozen=True)
class RelayConfig:
    """Persisted relay settings: relay address and bridged networks."""

    ipaddr: str | None = None
    network: tuple[str, ...] = ()

    @property
    def uplink_id(self) -> str | None:
        """Uplink currently bridged, i.e. the second network entry."""
        if len(self.network) < 2:
            return None
        return self.network[1]

    @classmethod
    def from_uci(cls, ipaddr: str | None, network: str | None) -> RelayConfig:
        return cls(ipaddr=ipaddr or None, network=tuple((network or "").split()))


@dataclass(frozen=True)
class Selection:
    """The uplink chosen by a run."""

    candidate: Candidate
    address: str
    indicator: str

    @property
    def uplink_id(self) -> str:
        return self.candidate.uplink_id

    @property
    def interface(self) -> str:
        return self.candidate.interface


@dataclass(frozen=True)
class Observations:
    """Point-in-time reads of host state used to make a decision.

    Attributes:
        relay: Persisted relay configuration.
        addresses: IPv4 address per interface, None when unassigned.
        usb_ports: Last USB port per driver tag, None when not found.
        indicators: Whether each read indicator is fully on, None when it
            has no LED device.
    """

    relay: RelayConfig
    addresses: dict[str, str | None]
    usb_ports: dict[str, int | None] = field(default_factory=dict)
    indicators: dict[str, bool | None] = field(default_factory=dict)


@dataclass(frozen=True)
class SelectorPlan:
    """Changes a run intends to make.

    Attributes:
        selection: Chosen uplink, None when nothing is detected.
        staged: UCI options to set on the relay section.
        indicator_on: Indicator to switch on, None if already on or absent.
        indicators_off: Indicators to switch off.
    """

    selection: Selection | None
    staged: dict[str, str] = field(default_factory=dict)
    indicator_on: str | None = None
    indicators_off: tuple[str, ...] = ()

    @property
    def dirty(self) -> bool:
        return bool(self.staged) or self.indicator_on is not None


@dataclass
class SelectorReport:
    """Outcome of one selector invocation."""

    outcome: SelectorOutcome
    plan: SelectorPlan | None = None
    committed: bool = False
    restarted: bool = False
    message: str = ""

    @property
    def selection(self) -> Selection | None:
        return self.plan.selection if self.plan else None

    def to_dict(self) -> dict[str, object]:
        selection = self.selection
        return {
            "outcome": self.outcome.value,
            "uplink_id": selection.uplink_id if selection else None,
            "interface": selection.interface if selection else None,
            "address": selection.address if selection else None,
            "indicator": selection.indicator if selection else None,
            "staged": dict(self.plan.staged) if self.plan else {},
            "committed": self.committed,
            "restarted": self.restarted,
            "message": self.message,
        }


def candidates_from_profile(profile: ProfileSchema) -> list[Candidate]:
    """Build the ordered candidate list from a profile."""
    return [
        Candidate(
            uplink_id=u.uplink_id,
            kind=u.kind,
            interface=u.interface,
            indicator=u.indicator,
            driver=u.driver,
        )
        for u in profile.uplinks
    ]


__all__ = [
    "RELAY_IPADDR",
    "RELAY_NETWORK",
    "Candidate",
    "Observations",
    "RelayConfig",
    "Selection",
    "SelectorPlan",
    "SelectorReport",
    "candidates_from_profile",
]
