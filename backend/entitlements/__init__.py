"""
Entitlements Module
Entitlement & verification core for the EchoTune licensing marketplace

This module provides:
- One-time code (OTC) issuance and verification for signup and password reset
- Checkout state machine (pending -> paid | failed) with idempotent finalization
- License code minting for paid purchases
- Entitlement resolution for asset downloads
- Account registration, login and profile updates built on the OTC engine

Collections used:
- accounts: Identity records with pending OTC fields
- purchases: One document per (buyer, asset) pair
- songs / contents: Priced assets (read-only here)
- entitlements_meta: db_init version stamp
"""

__version__ = "1.0.0"
