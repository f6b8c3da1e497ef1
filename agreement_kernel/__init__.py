"""
Agreement Kernel

Status tracking and hierarchical synchronization for multi-party scheduling
agreements:
- Append-only status history for any tracked entity
- Derived counts and statuses per counterparty and per agreement
- Bottom-up propagation with row locking and version checks
- Top-down cancellation
"""

__version__ = "0.1.0"
