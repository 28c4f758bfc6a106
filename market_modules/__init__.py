"""
Marketplace Modules.

One package per lifecycle, each a thin layer over the kernel and the
state machine engine:

- jobs: jobs (bid requests), bids, orders; JOB_WORKFLOW
- payments: contractor payment requests, batches, aggregation
- disputes: dispute records and the append-only comment trail

Each module contains:
- Domain models (frozen snapshots)
- ORM models (persistence)
- Workflows (state machines), where the module has one
- A service owning the transaction boundary of every operation
"""
