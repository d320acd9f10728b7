"""
GPIB access through a Prologix-compatible USB adapter.

Only the minimal verb set needed to talk to one instrument is implemented:
adapter bring-up, line queries and pre-escaped binary queries.
"""

from .session import AdapterSession

__all__ = ["AdapterSession"]
