"""Shared domain helpers."""

from .repository import AsyncRepository

__all__ = ["AsyncRepository"]
