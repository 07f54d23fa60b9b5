"""
                        Services Module

Contains all business logic. Services flush; routers commit.
External systems follow the hybrid pattern: a Mock implementation in
development and a Real one in staging/production.

Services:
    - payment: Khalti / eSewa wallet gateways
    - cbms: IRD Central Billing Monitoring System client
    - excel_manager: Lock-guarded Excel register exports
"""

from app.services.excel_manager import ExcelManager

__all__ = ["ExcelManager"]
