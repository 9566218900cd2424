"""
Background job processing.

This package provides:
- Durable SQL-backed queue store with compare-and-set claims
- Bounded in-process worker pool with retries and exponential backoff
- Registry-based pluggable processors with validated payloads
- Per-process metrics and milestone-throttled notifications
"""
