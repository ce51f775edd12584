"""relay.source

Where signals come from: the upstream account-totals API or a saved payload file.
"""

from __future__ import annotations

from relay.source.nof1 import AgentAccount, ExitPlan, SignalSource, SourcePosition, accounts_from_payload
from relay.source.normalizer import build_bundles, build_signal

__all__ = [
    "AgentAccount",
    "ExitPlan",
    "SignalSource",
    "SourcePosition",
    "accounts_from_payload",
    "build_bundles",
    "build_signal",
]
