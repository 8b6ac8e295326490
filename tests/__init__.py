"""
Test Package

Unit tests for the gateway core primitives, the upstream services layer
and the HTTP boundary live in tests/unit.
"""
