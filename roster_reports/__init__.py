"""
Roster Reconciliation Pipeline

A Python-based batch pipeline that reconciles booked order items from the
commerce platform into a canonical roster ledger and aggregates the ledger
into attendance, course and discount reports.
"""

__version__ = "1.0.0"
