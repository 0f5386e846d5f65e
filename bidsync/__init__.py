# bidsync/__init__.py
"""
Bid & subscription synchronization subsystem.

Provides:
- Configuration & endpoints for the marketplace REST API and push channel
- Core domain enums, models and the error taxonomy
- An in-memory entity store with change notification
- Services for bid/subscription commands, reconciliation, verification gating,
  polling and push ingestion
- Application-level SyncEngine tying them together
"""
