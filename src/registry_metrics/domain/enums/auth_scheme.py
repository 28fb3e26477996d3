# src/registry_metrics/domain/enums/auth_scheme.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Authorization scheme recognized while deriving a username label."""

from __future__ import annotations

from enum import Enum


class AuthScheme(str, Enum):
    """How the username label was obtained from the ``authorization`` header.

    ``NONE`` means no username could be derived; the label is ``UNKNOWN``.
    """

    JWT = "jwt"
    PASSWORD = "password"
    NONE = "none"
