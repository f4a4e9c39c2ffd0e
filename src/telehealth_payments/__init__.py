"""
Payment webhook reconciliation and subscription activation for the telehealth platform
"""

__version__ = "0.1.0"
