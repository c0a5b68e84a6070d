"""
slpkit Infrastructure - System infrastructure components.

This module contains:
- parallel: Bounded worker pool for batch replay decoding
"""

__all__: list[str] = []
