# kingrent/config/__init__.py
from __future__ import annotations

"""
kingrent.config is a PACKAGE.

- Company identity lives in: kingrent.config.company
- App runtime settings live in: kingrent.settings
"""

from .company import company_context

__all__ = ["company_context"]
