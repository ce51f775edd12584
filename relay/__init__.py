"""relay: guarded copy-trading relay.

Agent position snapshots come in. Guarded, audited, correctly-sized orders go out.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.3.0"
