"""Pump history reconciliation.

Turns decoded insulin pump records into a canonical, time-ordered
treatment history.
"""

__version__ = "0.1.0"
