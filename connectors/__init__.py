"""
connectors — provider integrations for the account broker.

Provides:
  • Closed ``Provider`` set with static endpoint configuration
  • OAuth2 PKCE connectors (Twitter, Reddit, Discord)
  • Authenticated platform clients and the Telegram bot client
  • Fernet encryption of tokens at rest

Each OAuth provider is a subclass of BaseConnector.
"""
