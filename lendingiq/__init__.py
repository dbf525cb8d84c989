"""
LendingIQ - document intelligence and risk scoring for loan applications.
"""

__version__ = "0.4.0"
