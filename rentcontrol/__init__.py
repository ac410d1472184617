"""
RentControl Lifecycle Engine

State machines for tenancy agreements, rent-control cases, hearings and
mediation sessions, with the audit trail each transition leaves behind.
"""

__version__ = "1.0.0"
