"""Pharmacy pickup-request lifecycle service.

Owns the workflow in which a customer asks a pharmacy to prepare medication
for pickup, the pharmacy drives the request through its operational states,
and a background sweeper auto-cancels requests that were never answered.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
