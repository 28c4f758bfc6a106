"""
Market Kernel - lifecycle engine for the contractor marketplace.

Provides:
- Declarative, guarded state machines with ordered hooks
- Atomic, scoped transactions with commit/rollback outcomes
- Append-only audit comments and delete restrictions
- Structured JSON logging
"""

__version__ = "0.1.0"
