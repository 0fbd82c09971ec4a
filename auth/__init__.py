"""
auth — Owner authentication for the broker API.

Provides:
  • Signed owner token creation & verification
"""
