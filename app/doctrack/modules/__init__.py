"""
Feature modules live under this package.

Each module owns its routes and models and reuses the platform primitives
(current user, group gate, audit, storage, DB session).
"""
