"""
                        Services Module

Contains the sync-layer services with the hybrid architecture pattern.
Each transport has Mock (development) and Real (production) implementations.

Services:
    - transition_policy: Order status graph and completion guard
    - merge_tracker: Item newness and ordering-session grouping
    - realtime: Push channel, rooms and event bus
    - alerts: Tone and desktop notification side effects
    - sessions: Per-table cart/session repository
    - backend: Ordering REST API client
"""

from ordersync.services import merge_tracker, transition_policy

__all__ = ["merge_tracker", "transition_policy"]
