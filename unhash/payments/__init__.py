"""
Payment handling for uploads.

Key components:
- pricing: Size-to-price calculation in settlement units
- channel: Payment destination and shared-secret derivation for quotes
- balance: Prepaid balances per Pay-Token
- middleware: x402 payment gate in front of the upload endpoints

Configuration is loaded from environment variables via unhash.core.config.
"""
