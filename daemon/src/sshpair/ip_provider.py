"""Local IP address discovery.

Used to tell the accepter where to reach the offerer. Prefers physical LAN
interfaces over VPN tunnels, but lists both since pairing over a VPN such
as Tailscale works just as well.
"""

from dataclasses import dataclass

import netifaces


@dataclass(frozen=True)
class LocalAddress:
    """An IPv4 address bound to a local interface."""

    iface: str
    address: str

    def to_dict(self) -> dict[str, str]:
        return {"iface": self.iface, "address": self.address}


class LocalNetworkIpProvider:
    """Enumerates non-loopback IPv4 addresses.

    Example:
        provider = LocalNetworkIpProvider()
        provider.primary()  # "192.168.1.100"
    """

    # Interface name prefixes that indicate physical network (not VPN/tunnel)
    PHYSICAL_PREFIXES = ("en", "eth", "wlan", "wl", "bridge")
    VPN_PREFIXES = ("utun", "tun", "tap", "wg", "tailscale")

    def addresses(self) -> list[LocalAddress]:
        """All non-loopback IPv4 addresses, physical interfaces first."""
        found = []
        for iface in netifaces.interfaces():
            if iface == "lo" or iface.startswith("lo"):
                continue
            addrs = netifaces.ifaddresses(iface).get(netifaces.AF_INET, [])
            for addr in addrs:
                ip = addr.get("addr")
                if ip and not ip.startswith("127."):
                    found.append(LocalAddress(iface=iface, address=ip))
        return sorted(found, key=lambda a: self._rank(a.iface))

    def _rank(self, iface: str) -> int:
        if iface.startswith(self.PHYSICAL_PREFIXES):
            return 0
        if iface.startswith(self.VPN_PREFIXES):
            return 2
        return 1

    def primary(self, default: str = "localhost") -> str:
        """Best address to advertise, or ``default`` if there is none."""
        addresses = self.addresses()
        return addresses[0].address if addresses else default
