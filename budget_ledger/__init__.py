"""
Budget Ledger - Source Package

The recurring execution ledger of a personal budgeting app: it decides which
scheduled payments, income schedules and transfer schedules are due, executes
each of them once per month, and keeps an auditable, purgeable history of
every execution run.

DESIGN PRINCIPLES:
1. A schedule fires at most once per period
2. Every write of one run carries the same batch identity
3. Fail early, fail visibly (structured errors, never silent drops)
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Budget Ledger Team"
