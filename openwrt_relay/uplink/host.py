"""Host facilities the uplink selector reads and writes.

Each class wraps one OpenWrt facility:
- UciStore: the UCI configuration store (``uci get/set/commit``)
- InterfaceTable: IPv4 addresses of network devices (``ip -4 -o addr``)
- LedBank: LED class devices under /sys/class/leds
- ProcessTable: relay process lookup (``pgrep -f``) and init scripts
- KernelLog: USB port lookup in the kernel ring buffer (``dmesg``)

All reads are point-in-time with no retry.
"""

from __future__ import annotations

import ipaddress
import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from openwrt_relay.config import Settings
    from openwrt_relay.profiles.schema import ProfileSchema

logger = logging.getLogger(__name__)

COMMAND_TIMEOUT = 30
DEFAULT_MAX_BRIGHTNESS = 255

_INET_PATTERN = re.compile(r"\binet (\d{1,3}(?:\.\d{1,3}){3})")


class HostCommandError(Exception):
    """Raised when a host command fails."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "host_command_error",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code


def _run(cmd: list[str]) -> subprocess.CompletedProcess[str]:
    try:
        return subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=COMMAND_TIMEOUT,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        raise HostCommandError(
            f"{cmd[0]} timed out after {COMMAND_TIMEOUT}s", code="timeout"
        ) from e
    except OSError as e:
        raise HostCommandError(
            f"Failed to run {cmd[0]}: {e}", code="execution_error"
        ) from e


class UciStore:
    """Key/value access to the UCI configuration store."""

    def __init__(self, binary: str = "uci") -> None:
        self.binary = binary

    def get(self, key: str) -> str | None:
        """Return the value of ``key``, or None if the option is unset."""
        result = _run([self.binary, "-q", "get", key])
        if result.returncode != 0:
            return None
        return result.stdout.strip()

    def set(self, key: str, value: str) -> None:
        """Stage ``key=value``; nothing is written until commit()."""
        result = _run([self.binary, "set", f"{key}={value}"])
        if result.returncode != 0:
            raise HostCommandError(
                f"uci set {key} failed: {result.stderr.strip()}",
                exit_code=result.returncode,
                code="uci_set_failed",
            )

    def commit(self, config: str) -> None:
        """Write all staged changes of ``config`` in one commit."""
        result = _run([self.binary, "commit", config])
        if result.returncode != 0:
            raise HostCommandError(
                f"uci commit {config} failed: {result.stderr.strip()}",
                exit_code=result.returncode,
                code="uci_commit_failed",
            )


def parse_ipv4_address(output: str) -> str | None:
    """Return the first valid IPv4 address in ``ip -4 -o addr`` output."""
    for match in _INET_PATTERN.finditer(output):
        try:
            return str(ipaddress.IPv4Address(match.group(1)))
        except ipaddress.AddressValueError:
            logger.debug("Ignoring malformed address %s", match.group(1))
    return None


class InterfaceTable:
    """IPv4 address lookup on network devices."""

    def __init__(self, binary: str = "ip") -> None:
        self.binary = binary

    def get_address(self, interface: str) -> str | None:
        """Return the IPv4 address of ``interface``, or None."""
        result = _run([self.binary, "-4", "-o", "addr", "show", "dev", interface])
        if result.returncode != 0:
            # Device does not exist (phone unplugged, STA down)
            return None
        return parse_ipv4_address(result.stdout)


class LedBank:
    """On/off control of LED class devices.

    Indicator names are mapped to class devices by prefixing ``prefix``
    (e.g., 'wlan5g' -> /sys/class/leds/green:wlan5g).
    """

    def __init__(self, root: Path, prefix: str = "") -> None:
        self.root = root
        self.prefix = prefix

    def _device(self, name: str) -> Path:
        return self.root / f"{self.prefix}{name}"

    def _max_brightness(self, device: Path) -> int:
        try:
            return int((device / "max_brightness").read_text().strip())
        except (OSError, ValueError):
            return DEFAULT_MAX_BRIGHTNESS

    def exists(self, name: str) -> bool:
        """Return True if the indicator has an LED class device."""
        return (self._device(name) / "brightness").is_file()

    def is_on(self, name: str) -> bool:
        """Return True if the indicator is at full brightness."""
        device = self._device(name)
        try:
            brightness = int((device / "brightness").read_text().strip())
        except (OSError, ValueError):
            logger.debug("Indicator %s unreadable, treating as off", name)
            return False
        return brightness >= self._max_brightness(device)

    def set(self, name: str, on: bool) -> None:
        """Switch the indicator fully on or off."""
        device = self._device(name)
        value = self._max_brightness(device) if on else 0
        try:
            (device / "brightness").write_text(f"{value}\n")
        except OSError as e:
            # Port LEDs may be missing on some board revisions
            logger.warning("Cannot set indicator %s: %s", name, e)


class ProcessTable:
    """Relay process lookup and restart."""

    def __init__(
        self,
        pgrep: str = "pgrep",
        init_dir: Path = Path("/etc/init.d"),
    ) -> None:
        self.pgrep = pgrep
        self.init_dir = init_dir

    def is_running(self, pattern: str) -> bool:
        """Return True if a process command line matches ``pattern``."""
        result = _run([self.pgrep, "-f", pattern])
        return result.returncode == 0

    def restart(self, service: str) -> None:
        """Restart ``service`` through its init script."""
        script = self.init_dir / service
        result = _run([str(script), "restart"])
        if result.returncode != 0:
            raise HostCommandError(
                f"{script} restart failed: {result.stderr.strip()}",
                exit_code=result.returncode,
                code="restart_failed",
            )


def usb_port_pattern(driver: str) -> re.Pattern[str]:
    """Return the pattern matching a driver's USB registration line.

    Registration lines name the USB device as ``<bus>-<port>[.<hub port>]``,
    e.g. ``rndis_host 1-1:1.0 usb0: register 'rndis_host' ...`` or
    ``ipheth 1-2:4.2: Apple iPhone USB Ethernet device attached``.
    """
    return re.compile(rf"\b{re.escape(driver)} \d+-(\d+)[.:]")


def parse_usb_port(log_text: str, driver: str) -> int | None:
    """Return the root port of the last registration of ``driver``."""
    port: int | None = None
    for match in usb_port_pattern(driver).finditer(log_text):
        port = int(match.group(1))
    return port


class KernelLog:
    """Kernel ring buffer lookups."""

    def __init__(self, binary: str = "dmesg") -> None:
        self.binary = binary

    def find_last_usb_port(self, driver: str) -> int | None:
        """Return the USB port the driver last registered on, or None."""
        result = _run([self.binary])
        if result.returncode != 0:
            logger.warning("dmesg failed: %s", result.stderr.strip())
            return None
        return parse_usb_port(result.stdout, driver)


@dataclass
class HostFacilities:
    """Bundle of the host facilities a selector run uses."""

    store: UciStore
    interfaces: InterfaceTable
    leds: LedBank
    processes: ProcessTable
    kernel_log: KernelLog

    @classmethod
    def from_settings(
        cls, settings: Settings, profile: ProfileSchema
    ) -> HostFacilities:
        return cls(
            store=UciStore(),
            interfaces=InterfaceTable(),
            leds=LedBank(settings.leds_root, profile.led_prefix),
            processes=ProcessTable(),
            kernel_log=KernelLog(),
        )


__all__ = [
    "HostCommandError",
    "HostFacilities",
    "InterfaceTable",
    "KernelLog",
    "LedBank",
    "ProcessTable",
    "UciStore",
    "parse_ipv4_address",
    "parse_usb_port",
    "usb_port_pattern",
]
