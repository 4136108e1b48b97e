# app/wallet/__init__.py
"""
Custodial agent wallets.

- vault: password-based encryption of agent private keys
- agent: agent wallet lifecycle (create, fund, pay, list)
"""
