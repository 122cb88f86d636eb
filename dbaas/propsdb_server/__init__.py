"""
PropsDB Server - Versioned hierarchical property storage over HTTP.

This package implements a multi-tenant property store built on:
- Documents holding named collections of named JSON properties
- A shared application scope and a per-user scope
- Optimistic concurrency with one version counter per document
- Any SQLAlchemy-supported relational engine as the storage layer

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌───────────────┐
    │   Client    │────▶│  HTTP API   │────▶│  Authorizer   │
    │  (browser)  │     │  (FastAPI)  │     │  (sessions)   │
    └─────────────┘     └──────┬──────┘     └───────────────┘
                               │
                               ▼
                        ┌─────────────┐
                        │PropertyStore│  application / user
                        └──────┬──────┘
                               │  one transaction per call
                               ▼
                  ┌──────────────────────────┐
                  │ MySQL / PostgreSQL /     │
                  │ SQLite / SQL Server      │
                  └──────────────────────────┘

Invariants:
    - A document version advances by exactly 1 per data-changing mutation
    - Collections and properties without references do not outlive a mutation
    - User documents are only ever visible to their owner

How to change safely:
    - Table names are shared with existing deployments
    - The HTTP error and success bodies are consumed by existing clients
"""

from ._version import __version__

__all__ = ["__version__"]
