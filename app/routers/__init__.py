"""
API routers, one per business area.
"""

from app.routers import (
    accounting,
    billing,
    guest,
    invoices,
    loyalty,
    orders,
    payments,
    purchases,
    reports,
    restaurants,
    sessions,
    stock,
)

ROUTERS = [
    restaurants.router,
    sessions.router,
    guest.router,
    orders.router,
    billing.router,
    payments.router,
    loyalty.router,
    accounting.router,
    stock.router,
    purchases.router,
    invoices.router,
    reports.router,
]

__all__ = ["ROUTERS"]
