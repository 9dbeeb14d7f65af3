"""secretroll — generation-based secret activation.

Decrypt once per activation, publish atomically, forget the previous generation.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.4.0"
