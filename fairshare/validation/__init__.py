"""Request validation package."""

from fairshare.validation.validator import ExpenseRequestValidator

__all__ = ["ExpenseRequestValidator"]
