"""
Feature modules live under this package.

Each module owns its models, service and blueprint while reusing the platform
primitives (db, storage, audit log, config) from ``app.docvault``.
"""
