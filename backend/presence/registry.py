"""Set of device addresses the scanner probes on every cycle."""

from collections.abc import Iterable


def _normalize(addresses: Iterable[str] | str) -> list[str]:
    if isinstance(addresses, str):
        addresses = [addresses]
    # dict preserves first-seen order while collapsing duplicates
    return list(dict.fromkeys(address.lower() for address in addresses))


class DeviceRegistry:
    """De-duplicated, lower-cased device addresses."""

    def __init__(self) -> None:
        self._devices: dict[str, None] = {}

    def add(self, addresses: Iterable[str] | None) -> None:
        if not addresses:
            return
        for address in _normalize(addresses):
            self._devices[address] = None

    def remove(self, addresses: Iterable[str] | None) -> None:
        if not addresses:
            return
        for address in _normalize(addresses):
            self._devices.pop(address, None)

    def replace(self, addresses: Iterable[str] | None) -> None:
        self._devices = dict.fromkeys(_normalize(addresses or []))

    def list(self) -> list[str]:
        return list(self._devices)

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, address: str) -> bool:
        return address.lower() in self._devices
