# app/x402/__init__.py
"""
HTTP 402 payment flow for pay-per-asset downloads.

Key components:
- challenge: payment challenges returned with 402 responses
- tokens: short-lived access tokens scoped to one asset
- verifier: on-chain receipt verification and idempotent payment recording
- audit: JSON-lines audit log of payment events

Configuration is loaded from environment variables via app.core.config.
"""
