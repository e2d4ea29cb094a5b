"""
Business modules: members, deaths, benefits, ledger, reports.

Each module owns its models/service/admin routes and reuses the shared
primitives (auth, RBAC, audit, DB session, error taxonomy).
"""
