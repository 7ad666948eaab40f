"""
Finance Ledger - Source Package

The recurrence-and-budget engine of a personal-finance ledger:
- scheduled transactions that come due, advance and materialize entries
- budget spend totals kept in step with the transaction stream
- de-duplicated threshold notifications

DESIGN PRINCIPLES:
1. Time is an argument, never read from the wall clock inside the core
2. One failing item never aborts its siblings
3. Multi-entity writes share one atomic scope where the backend allows it
4. Every state change is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Finance Ledger Team"
