"""
Prometheus metrics for storage operations.
"""
