"""
Fairshare - Source Package

A shared expense tracker: personal invoices and payments, plus groups
that split recurring or one-off expenses equally or by declared income.

DESIGN PRINCIPLES:
1. Splits always add up to the expense amount
2. A split is settled exactly once
3. Fail early, fail visibly
4. Every state change is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Fairshare Team"
