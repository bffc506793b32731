"""
connectors — link local user accounts to OAuth service providers.

Provides:
  • OAuth1 request signing & three-legged flow (request token → verifier → access token)
  • OAuth2 authorization-code flow with signed state and token refresh
  • Per-user connection storage with ranking & Fernet encryption at rest
  • ConnectController driving initiate / callback / status / disconnect

Providers are declared in ``config/providers.yaml`` and registered as
connection factories at startup.
"""
