"""
pimarket Core Module

Hosting ledger, marketplace contracts, configuration, logging and the
exception hierarchy.
"""

__all__ = []
