"""
Platform-level building blocks shared by every route.

- errors: error taxonomy and uniform JSON envelope
- rbac: permission enforcement dependencies
- scoped_filter: tenant-scoped query/write predicates
"""
