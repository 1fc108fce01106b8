"""
BudgetFX - project budget service with live currency conversion.
"""

__version__ = "1.0.0"
