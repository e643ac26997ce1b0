"""
Infrastructure adapters: the storage transport and operation metrics.
"""
