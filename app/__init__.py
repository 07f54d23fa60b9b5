"""
                Nepal Restaurant POS

A multi-tenant restaurant point-of-sale backend: QR table ordering,
kitchen display, billing with Khalti / eSewa, loyalty, double-entry
accounting, stock, purchases and IRD (CBMS) tax invoicing.

Version: 1.0.0
"""

__version__ = "1.0.0"
