"""Device conditions (battery, network) consulted before syncing."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import psutil

from recall.models import NetworkType

logger = logging.getLogger(__name__)


class DeviceConditions(Protocol):
    """Protocol for the device state read by sync gating."""

    def battery_percent(self) -> Optional[int]:
        """Battery charge 0-100, or None when the device has no battery."""
        ...

    def is_power_saving(self) -> bool:
        ...

    def network_type(self) -> NetworkType:
        ...


def is_in_quiet_hours(hour: int, start: int, end: int) -> bool:
    """Return True if hour falls in [start, end); windows with start > end wrap midnight."""
    if start > end:
        return hour >= start or hour < end
    return start <= hour < end


class SystemConditions:
    """Reads battery and network state from the OS via psutil."""

    def battery_percent(self) -> Optional[int]:
        try:
            battery = psutil.sensors_battery()
        except (AttributeError, NotImplementedError, OSError) as exc:
            logger.debug("Battery query failed: %s", exc)
            return None
        if battery is None:
            return None
        return int(battery.percent)

    def is_power_saving(self) -> bool:
        # psutil exposes no OS battery-saver flag; a discharging battery that
        # is nearly empty is the closest portable signal.
        try:
            battery = psutil.sensors_battery()
        except (AttributeError, NotImplementedError, OSError):
            return False
        if battery is None or battery.power_plugged:
            return False
        return battery.percent <= 5

    def network_type(self) -> NetworkType:
        """Best-effort network type detection from interface names."""
        try:
            stats = psutil.net_if_stats()
            addrs = psutil.net_if_addrs()
        except OSError as exc:
            logger.debug("Network type detection failed: %s", exc)
            return NetworkType.UNKNOWN

        found = [
            name.lower()
            for name, st in stats.items()
            if st.isup and name in addrs and name.lower() not in ("lo", "lo0")
            and "loopback" not in name.lower()
        ]
        if not found:
            return NetworkType.OFFLINE
        for keywords, kind in (
            (("wlan", "wlp", "wi-fi", "wifi", "airport", "en0"), NetworkType.WIFI),
            (("eth", "enp", "ens", "en1", "en2"), NetworkType.WIRED),
            (("wwan", "pdp_ip", "rmnet", "cellular"), NetworkType.CELLULAR),
            (("tun", "tap", "vpn", "wg", "utun"), NetworkType.VPN),
        ):
            if any(k in name for name in found for k in keywords):
                return kind
        return NetworkType.UNKNOWN
