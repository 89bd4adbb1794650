"""
Closing Kernel - periodic inventory closing engine.

Freezes facility-inventory positions per business entity and facility type:
- Daily closings chained by carried-forward quantities
- Monthly closings gated on the last day of the month
- Cascading recalculation with versioned, auditable records
- Per-key serialization of every writer
"""

__version__ = "0.1.0"
