# app/reputation/__init__.py
"""
Wallet reputation derived from payment history.

- policy: score curve and level thresholds
- engine: recompute scores and mint milestone NFTs
- minter: HTTP client for the NFT minting service
- tasks: bounded background queue for post-payment side effects
"""
