"""
Storage relay endpoints.

Shares are only ever published to public ``wss://`` relays. Hosts the
relay client could not reach without a proxy (loopback, private ranges,
Tor/I2P/Lokinet names) are refused when a switch is registered, not when
its release fires.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from rfc3986 import uri_reference
from rfc3986.exceptions import UnpermittedComponentError, ValidationError
from rfc3986.validators import Validator


if TYPE_CHECKING:
    from collections.abc import Iterable

    from rfc3986 import URIReference


TLS_PORT = 443
UNREACHABLE_SUFFIXES = (".onion", ".i2p", ".loki")
LOOPBACK_NAMES = frozenset({"localhost", "localhost.localdomain"})

_validator = (
    Validator()
    .require_presence_of("scheme", "host")
    .allow_schemes("ws", "wss")
    .check_validity_of("scheme", "host", "port", "path")
)


def _parse(raw: str) -> URIReference:
    if "\x00" in raw:
        raise ValueError("relay URL contains a NUL byte")
    uri = uri_reference(raw.strip()).normalize()
    try:
        _validator.validate(uri)
    except UnpermittedComponentError:
        raise ValueError(f"{raw!r}: scheme must be ws or wss") from None
    except ValidationError as e:
        raise ValueError(f"{raw!r}: {e}") from None
    if uri.query is not None:
        raise ValueError(f"{raw!r}: a relay URL takes no query string")
    if uri.fragment is not None:
        raise ValueError(f"{raw!r}: a relay URL takes no fragment")
    return uri


def _require_public(host: str) -> None:
    if not host:
        raise ValueError("relay URL has no host")
    if host in LOOPBACK_NAMES or host.endswith(UNREACHABLE_SUFFIXES):
        raise ValueError(f"{host} is not reachable from the public internet")

    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        labels = host.split(".")
        if len(labels) == 1 or any(not lb or lb[0] == "-" or lb[-1] == "-" for lb in labels):
            raise ValueError(f"{host} is not a fully qualified domain name") from None
        return

    if ip.is_multicast or not ip.is_global:
        raise ValueError(f"{host} is not a public address")


def _clean_path(path: str | None) -> str | None:
    if not path:
        return None
    segments = [s for s in path.split("/") if s]
    return "/" + "/".join(segments) if segments else None


@dataclass(frozen=True, slots=True)
class Relay:
    """A relay URL in canonical form.

    Parsing lowercases the host, upgrades ``ws`` to ``wss``, drops port
    443 and collapses the path, so two spellings of one relay compare
    equal::

        Relay("WS://Relay.Example.com:443/") == Relay("wss://relay.example.com")

    Raises:
        TypeError: *raw_url* is not a string.
        ValueError: The URL is malformed, carries a query or fragment, or
            names a host that is not publicly reachable.
    """

    raw_url: str = field(repr=False, compare=False)

    url: str = field(init=False)
    host: str = field(init=False, compare=False)
    port: int | None = field(init=False, compare=False)
    path: str | None = field(init=False, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.raw_url, str):
            raise TypeError(f"raw_url must be a str, got {type(self.raw_url).__name__}")

        uri = _parse(self.raw_url)
        host = uri.host.strip("[]").lower()
        _require_public(host)

        port = int(uri.port) if uri.port else None
        if port == TLS_PORT:
            port = None
        path = _clean_path(uri.path)

        authority = f"[{host}]" if ":" in host else host
        if port is not None:
            authority = f"{authority}:{port}"

        object.__setattr__(self, "host", host)
        object.__setattr__(self, "port", port)
        object.__setattr__(self, "path", path)
        object.__setattr__(self, "url", f"wss://{authority}{path or ''}")

    def __str__(self) -> str:
        return self.url


def normalize_relay_urls(urls: Iterable[str]) -> tuple[str, ...]:
    """Canonical URLs of *urls*, first occurrence wins.

    Raises:
        ValueError: On the first URL that does not parse.
    """
    return tuple(dict.fromkeys(Relay(raw).url for raw in urls))
