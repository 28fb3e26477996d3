# src/registry_metrics/domain/services/header_parsers.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Header parsers for metric labels.

Summary:
    Best-effort conversion of raw ``authorization`` and ``user-agent`` header
    strings into :class:`IdentityFact` and :class:`ClientFact`. Both functions
    are total: malformed input maps to the ``UNKNOWN`` facts and nothing is
    raised to the caller.

Authorization formats:
    * ``Basic base64(username:password)``
    * ``Bearer <b64 header>.<b64 payload>.<b64 signature>``; the payload's
      ``name`` claim becomes the username. The signature is never checked:
      the result is a metrics label, not an authentication decision.

User-agent format:
    ``npm/7.20.5 node/v14.17.1 darwin x64 workspaces/false`` yields
    ``("npm", "7.20.5")``. Browser agents collapse to ``("Mozilla", "5.0")``.

Layer:
    domain/services
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from typing import Any, Final

from registry_metrics.domain.entities.metric_context import UNKNOWN, ClientFact, IdentityFact
from registry_metrics.domain.enums.auth_scheme import AuthScheme

__all__ = ["derive_identity", "derive_client"]

logger = logging.getLogger(__name__)

_UNKNOWN_IDENTITY: Final[IdentityFact] = IdentityFact(UNKNOWN, AuthScheme.NONE)
_UNKNOWN_CLIENT: Final[ClientFact] = ClientFact(UNKNOWN, None)

_ASCII_RE: Final[re.Pattern[str]] = re.compile(r"^[\x00-\x7F]*$")
_AGENT_NAME_SPLIT_RE: Final[re.Pattern[str]] = re.compile(r"[^\w-]", re.ASCII)
_AGENT_VERSION_RE: Final[re.Pattern[str]] = re.compile(r"(\d+[-_]?\d*[.]?){2,4}", re.ASCII)
_URLSAFE_TO_STD: Final[dict[int, int]] = str.maketrans("-_", "+/")


def _b64decode_lenient(value: str) -> bytes:
    """Decode standard or URL-safe base64 with or without padding.

    Characters outside the alphabet are discarded.

    Raises:
        binascii.Error: If the remaining data cannot be decoded.
    """
    data = value.strip().translate(_URLSAFE_TO_STD).rstrip("=")
    data += "=" * (-len(data) % 4)
    return base64.b64decode(data, validate=False)


def _identity_from_bearer(token: str) -> IdentityFact:
    segments = token.split(".")
    if len(segments) < 2:
        raise ValueError("bearer token has no payload segment")
    payload: Any = json.loads(_b64decode_lenient(segments[1]).decode("utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("bearer payload is not a JSON object")
    name = payload.get("name", UNKNOWN)
    if not isinstance(name, str) or not name:
        raise ValueError("bearer payload name is not a non-empty string")
    return IdentityFact(name, AuthScheme.JWT)


def _identity_from_basic(credentials: str) -> IdentityFact:
    decoded = _b64decode_lenient(credentials).decode("utf-8", errors="replace")
    username = decoded.split(":", 1)[0] or UNKNOWN
    # Non-base64 input tends to decode to non-ASCII bytes; reject those.
    if not _ASCII_RE.match(username):
        return _UNKNOWN_IDENTITY
    return IdentityFact(username, AuthScheme.PASSWORD)


def derive_identity(authorization: str | None) -> IdentityFact:
    """Derive the username label from an ``authorization`` header.

    Args:
        authorization: Raw header value, if any.

    Returns:
        The identity fact; ``UNKNOWN``/``none`` when absent or unparseable.
    """
    if not authorization or not isinstance(authorization, str):
        logger.debug(
            "metrics: [derive_identity] authorization header string is not present or is invalid"
        )
        return _UNKNOWN_IDENTITY

    scheme, _, value = authorization.partition(" ")
    value = value.strip()
    if not value:
        return _UNKNOWN_IDENTITY

    scheme = scheme.strip().lower()
    try:
        if scheme == "bearer":
            return _identity_from_bearer(value)
        if scheme == "basic":
            return _identity_from_basic(value)
        return _UNKNOWN_IDENTITY
    except (ValueError, binascii.Error, UnicodeDecodeError):
        # json.JSONDecodeError is a ValueError subclass.
        logger.debug("metrics: [derive_identity] error parsing authorization header")
        return _UNKNOWN_IDENTITY


def derive_client(user_agent: str | None) -> ClientFact:
    """Derive the agent name and version from a ``user-agent`` header.

    Args:
        user_agent: Raw header value, if any.

    Returns:
        The client fact; ``UNKNOWN`` name and no version when absent.
    """
    if not user_agent or not isinstance(user_agent, str):
        logger.debug(
            "metrics: [derive_client] user agent header string is not present or is invalid"
        )
        return _UNKNOWN_CLIENT

    agent_name = _AGENT_NAME_SPLIT_RE.split(user_agent, maxsplit=1)[0] or UNKNOWN
    version_match = _AGENT_VERSION_RE.search(user_agent)
    agent_version = version_match.group(0) if version_match else None

    logger.debug(
        "metrics: [derive_client] parsed user agent header",
        extra={"extra": {"userAgentName": agent_name, "userAgentVersion": agent_version}},
    )
    return ClientFact(agent_name, agent_version)
