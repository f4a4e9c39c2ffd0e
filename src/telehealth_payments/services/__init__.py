"""
Payment services: status normalization, ledger, reconciliation and activation
"""
