"""Pickup API routers.

- pickups: customer and pharmacy operations on pickup requests
- pharmacies: pharmacy dashboard stats
"""

from pharmapickup.api.routers.pickups import pharmacy_router
from pharmapickup.api.routers.pickups import router as pickups_router

__all__ = ["pharmacy_router", "pickups_router"]
