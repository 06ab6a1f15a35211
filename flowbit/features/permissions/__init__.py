"""
Permission management feature module.

Implements organization-scoped role-based access control: dot-namespaced
permission strings, wildcard evaluation, role storage and audit logging.
"""
