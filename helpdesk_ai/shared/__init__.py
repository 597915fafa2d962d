"""
Shared Kernel Module
====================

Generic infrastructure used by the intake context: structured logging,
the retry wrapper and HTTP middleware.

DO NOT add intake business logic to the shared kernel.
"""
