"""
broker — OAuth2 PKCE session broker and platform client pool.

Provides:
  • PKCE pair + state generation
  • Pending-login registry with TTL eviction (single-use state)
  • Authorization URL building and callback exchange
  • Token refresh with fail-closed re-link policy
  • Fingerprint-keyed pool of live platform clients

``AccountBroker`` (broker.service) is the single object callers use.
"""
