"""
Rental Kernel - order lifecycle and reconciliation core

A transactional rental engine with:
- Exact two-decimal money arithmetic
- Half-open interval availability and no-overbooking confirmation
- Monotonic order state machine with durable side-effect records
- Invoice reconciliation against partial and gateway payments
"""

__version__ = "0.1.0"
