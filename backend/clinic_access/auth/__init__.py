"""
Authentication for the clinic access core.

- passwords: bcrypt hashing
- token_service: HS256 session tokens (issue/verify)
- permission_evaluator: effective permission computation
- context_resolver: per-request ExecutionContext
- middleware: FastAPI dependencies
"""
