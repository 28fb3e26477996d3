# src/registry_metrics/domain/entities/metric_context.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Request metric context and label sets (Domain Layer).

Purpose:
    Immutable records describing one observed request in two phases:

    1. Arrival: :class:`RequestMetricContext` captures everything knowable
       before the handler runs (method, decoded path, identity, client,
       package group).
    2. Completion: :meth:`RequestMetricContext.finalize_request` /
       :meth:`RequestMetricContext.finalize_package` add the final status code
       and return the label set handed to the counter. The context itself is
       never mutated.

Label schemas:
    Request counter: ``username``, ``userAgentName``, ``statusCode``, ``httpMethod``.
    Package counter: ``username``, ``userAgentName``, ``statusCode``, ``packageGroup``.

Cardinality:
    Every distinct label combination is a new time series. ``username`` and
    ``packageGroup`` are the unbounded dimensions; grouping rules exist to
    bound the latter.

Layer:
    domain/entities
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Final

from registry_metrics.domain.enums.auth_scheme import AuthScheme

__all__ = [
    "UNKNOWN",
    "REQUEST_LABEL_NAMES",
    "PACKAGE_LABEL_NAMES",
    "IdentityFact",
    "ClientFact",
    "RequestMetricContext",
    "RequestLabels",
    "PackageLabels",
]

UNKNOWN: Final[str] = "UNKNOWN"

REQUEST_LABEL_NAMES: Final[tuple[str, ...]] = (
    "username",
    "userAgentName",
    "statusCode",
    "httpMethod",
)
PACKAGE_LABEL_NAMES: Final[tuple[str, ...]] = (
    "username",
    "userAgentName",
    "statusCode",
    "packageGroup",
)


@dataclass(frozen=True, slots=True)
class IdentityFact:
    """Username label derived from the ``authorization`` header.

    This is an identity *label*, not a trust decision: bearer payloads are
    read without signature verification.
    """

    username: str = UNKNOWN
    auth_scheme: AuthScheme = AuthScheme.NONE


@dataclass(frozen=True, slots=True)
class ClientFact:
    """Agent name/version derived from the ``user-agent`` header."""

    agent_name: str = UNKNOWN
    agent_version: str | None = None


@dataclass(frozen=True, slots=True)
class RequestLabels:
    """Finalized label set for the request counter."""

    username: str
    user_agent_name: str
    status_code: int
    http_method: str

    def as_dict(self) -> dict[str, str]:
        """Return labels keyed by the request counter schema, in schema order."""
        return {
            "username": self.username,
            "userAgentName": self.user_agent_name,
            "statusCode": str(self.status_code),
            "httpMethod": self.http_method,
        }


@dataclass(frozen=True, slots=True)
class PackageLabels:
    """Finalized label set for the package download counter.

    ``package_group`` is ``None`` when no grouping rule matched; it is
    exported as an empty label value, which Prometheus treats as absent.
    """

    username: str
    user_agent_name: str
    status_code: int
    package_group: str | None = None

    def as_dict(self) -> dict[str, str]:
        """Return labels keyed by the package counter schema, in schema order."""
        return {
            "username": self.username,
            "userAgentName": self.user_agent_name,
            "statusCode": str(self.status_code),
            "packageGroup": self.package_group or "",
        }


@dataclass(frozen=True, slots=True)
class RequestMetricContext:
    """Arrival-phase record for one observed request.

    Attributes:
        http_method: Uppercased HTTP method.
        decoded_path: Percent-decoded request path (raw path if decoding failed).
        identity: Username fact.
        client: User-agent fact.
        group: Package group label, package downloads only.
        user_agent: Raw ``user-agent`` header, kept for diagnostics only.
    """

    http_method: str
    decoded_path: str
    identity: IdentityFact = field(default_factory=IdentityFact)
    client: ClientFact = field(default_factory=ClientFact)
    group: str | None = None
    user_agent: str | None = None

    def finalize_request(self, status_code: int) -> RequestLabels:
        """Produce the request counter labels once the status code is known."""
        return RequestLabels(
            username=self.identity.username,
            user_agent_name=self.client.agent_name,
            status_code=status_code,
            http_method=self.http_method,
        )

    def finalize_package(self, status_code: int) -> PackageLabels:
        """Produce the package download counter labels once the status code is known."""
        return PackageLabels(
            username=self.identity.username,
            user_agent_name=self.client.agent_name,
            status_code=status_code,
            package_group=self.group,
        )

    def log_fields(self) -> dict[str, str | None]:
        """Diagnostic fields emitted next to the labels in collection logs."""
        return {
            "decodedPath": self.decoded_path,
            "authType": self.identity.auth_scheme.value,
            "userAgentString": self.user_agent,
            "userAgentVersion": self.client.agent_version,
        }
