"""
connectors — Mailchimp OAuth connection lifecycle and API access.

Handles:
  • OAuth2 auth-URL generation with single-use, expiring state
  • Callback handling (code → token exchange → account metadata)
  • One encrypted connection per user, soft disconnect
  • Cached connection validation
  • User-scoped Mailchimp API calls returned as uniform envelopes
"""
