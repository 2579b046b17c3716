"""
Gateway data models for proxied upstream access.
"""

from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, field_validator


class ProxyMethod(str, Enum):
    """HTTP methods supported by proxy."""
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"


# Methods whose inbound body is never sent upstream.
BODYLESS_METHODS = frozenset({ProxyMethod.GET.value, ProxyMethod.HEAD.value})


class TargetAllowlist(BaseModel):
    """Immutable mapping of target identifier -> upstream base origin.

    Base origins must be ``scheme://host[:port]`` with no path, query,
    fragment or trailing slash. Construction fails on anything else so a
    bad table stops the process at import time.
    """

    targets: Mapping[str, str]

    class Config:
        frozen = True

    @field_validator("targets")
    @classmethod
    def _validate_targets(cls, value: Mapping[str, str]) -> Mapping[str, str]:
        checked: Dict[str, str] = {}
        for name, base_url in value.items():
            if not name or "/" in name:
                raise ValueError(f"Invalid target identifier: {name!r}")
            parts = urlsplit(base_url)
            if parts.scheme not in ("http", "https") or not parts.netloc:
                raise ValueError(f"Target {name!r} has malformed base URL: {base_url!r}")
            if parts.path or parts.query or parts.fragment or base_url.endswith("/"):
                raise ValueError(
                    f"Target {name!r} base URL must be an origin without path: {base_url!r}"
                )
            checked[name] = base_url
        return MappingProxyType(checked)

    def resolve(self, target: str) -> Optional[str]:
        """Exact, case-sensitive lookup of a target's base origin."""
        return self.targets.get(target)

    def __contains__(self, target: str) -> bool:
        return target in self.targets


class HeaderAllowlist(BaseModel):
    """Ordered, immutable set of header names allowed across the boundary."""

    names: Tuple[str, ...]

    class Config:
        frozen = True

    @field_validator("names")
    @classmethod
    def _normalize(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        names = tuple(n.strip().lower() for n in value)
        if any(not n for n in names):
            raise ValueError("Header names must be non-empty")
        return names

    def __contains__(self, name: str) -> bool:
        return name.lower() in self.names

    def pick(self, headers: Mapping[str, str]) -> Dict[str, str]:
        """Copy the allowlisted headers present in ``headers``.

        ``headers`` must support case-insensitive lookup (starlette and
        httpx header containers both do). Empty values are treated as
        absent.
        """
        picked: Dict[str, str] = {}
        for name in self.names:
            value = headers.get(name)
            if value:
                picked[name] = value
        return picked


class ProxyRequest(BaseModel):
    """Outbound request rebuilt from an inbound proxy call."""

    method: ProxyMethod
    target: str
    path: str = ""
    query: str = ""
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[bytes] = None

    class Config:
        use_enum_values = True


class ProxyResponse(BaseModel):
    """Inbound-facing response built from an upstream response."""

    status_code: int
    status_text: str = ""
    headers: Dict[str, str] = Field(default_factory=dict)
    # Raw upstream byte stream; never decoded or buffered.
    body: Any = None
    # Releases the upstream connection; safe to call more than once.
    close: Any = None


class ProxyStats(BaseModel):
    """Proxy statistics."""

    total_requests: int = 0
    forwarded_requests: int = 0
    rejected_requests: int = 0
    failed_requests: int = 0
    requests_by_target: Dict[str, int] = Field(default_factory=dict)
