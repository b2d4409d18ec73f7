"""Shared error classes for the investor search core."""

from __future__ import annotations


class InvestorServiceError(RuntimeError):
    """Base exception raised inside the investor search core."""

    def __init__(self, message: str, code: str = "INVESTOR_SERVICE_ERROR") -> None:
        super().__init__(message)
        self.code = code


class InvestorStoreError(InvestorServiceError):
    """Raised when the record store fails to read or write investors."""


class GenerativeSourceError(InvestorServiceError):
    """Raised when the upstream language model fails or returns unusable output."""


class InvestorValidationError(InvestorServiceError):
    """Raised when a model payload cannot be parsed into investor data."""
