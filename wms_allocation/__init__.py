"""
WMS Allocation
==============
Batch-aware allocation of sales-order lines to pallet inventory.
"""

__version__ = "1.0.0"
