"""
Gateway Core Package

Contains the upstream-agnostic primitives shared by every service:
- errors: Classified error taxonomy (ExtError, ErrorRegistry) and the error envelope
- cache: TTL cache with single-flight refresh
- fanout: Concurrent fan-out with per-task outcomes
- rate_limiter: Minimum-interval dispatch pacing per upstream
- config / logging / schemas: Settings, loggers and boundary models

Nothing in this package performs I/O on its own; services plug their
upstream calls into these primitives.
"""
