"""Destination addresses and candidate lists."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_FALLBACK_PORT = 443


@dataclass(frozen=True)
class Destination:
    """A TCP endpoint the relay may connect to."""

    hostname: str
    port: int

    def __str__(self) -> str:
        if ":" in self.hostname:
            return f"[{self.hostname}]:{self.port}"
        return f"{self.hostname}:{self.port}"

    @classmethod
    def parse(cls, value: str, default_port: int = DEFAULT_FALLBACK_PORT) -> Destination:
        """Parse ``host``, ``host:port`` or ``[ipv6]:port``.

        Raises:
            ValueError: If the port is not a number in 1..65535.
        """
        value = value.strip()
        port_str = ""

        if value.startswith("["):
            end = value.find("]")
            if end == -1:
                raise ValueError(f"Unterminated IPv6 literal: {value!r}")
            hostname = value[1:end]
            rest = value[end + 1 :]
            if rest:
                if not rest.startswith(":"):
                    raise ValueError(f"Unexpected text after IPv6 literal: {value!r}")
                port_str = rest[1:]
        elif value.count(":") == 1:
            hostname, port_str = value.split(":")
        else:
            # bare hostname, or an unbracketed IPv6 literal
            hostname = value

        if not port_str:
            return cls(hostname=hostname, port=default_port)

        try:
            port = int(port_str)
        except ValueError:
            raise ValueError(f"Invalid port in {value!r}") from None
        if not 1 <= port <= 65535:
            raise ValueError(f"Port out of range in {value!r}: {port}")
        return cls(hostname=hostname, port=port)


def build_candidates(primary: Destination, fallback: Destination | None) -> list[Destination]:
    """Return the ordered list of destinations to try.

    The fallback is only added behind a primary with a non-empty hostname,
    and never when it is the primary itself.
    """
    candidates = [primary]
    if fallback is None or not fallback.hostname:
        return candidates
    if not primary.hostname or fallback == primary:
        return candidates
    candidates.append(fallback)
    return candidates
