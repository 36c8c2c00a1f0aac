# onboarding/config/__init__.py
from __future__ import annotations

"""
onboarding.config is a PACKAGE.

- Brand identity per label lives in: onboarding.config.labels
- App runtime settings live in: onboarding.settings
"""

from .labels import label_context, label_profile

__all__ = ["label_context", "label_profile"]
