"""
Feature modules: each owns its blueprint, models and service layer.

Modules reuse the platform primitives (auth, RBAC, audit, entitlements,
storage, DB session) and never reach into another module's blueprint.
"""
