"""
TLS secret sync: keeps a stored TLS certificate valid and matching its desired spec.
"""

__version__ = "1.0.0"
