"""
Core modules for bot telemetry.

This package contains the cost accounting engine: pricing tables and the
token usage type they consume.
"""
