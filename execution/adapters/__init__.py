# SPDX-License-Identifier: MIT
"""Exchange command client implementations."""

from __future__ import annotations

from .delta import DELTA_BASE_URL, DELTA_TESTNET_URL, DeltaRESTCommandClient, sign_request

__all__ = ["DELTA_BASE_URL", "DELTA_TESTNET_URL", "DeltaRESTCommandClient", "sign_request"]
