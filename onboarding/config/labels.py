# onboarding/config/labels.py
from __future__ import annotations

"""
Brand identity per label. A request's label decides which brand name and logo
appear in its emails.
"""

from onboarding.constants import Label

# -----------------------------
# Canonical fields
# -----------------------------
LABEL_PROFILES = {
    Label.COLORIGINZ: {
        "name": "Coloriginz",
        "short_name": "COL",
        "logo_path": "/static/logo.png",
        "email_logo_height": 60,
    },
    Label.PFC: {
        "name": "Parfum Flower Company",
        "short_name": "PFC",
        "logo_path": "/static/PFC.jpg",
        "email_logo_height": 120,
    },
}

DEFAULT_LABEL = Label.COLORIGINZ


def label_profile(label) -> dict:
    """Unknown labels fall back to the default brand."""
    try:
        return LABEL_PROFILES[Label(label)]
    except ValueError:
        return LABEL_PROFILES[DEFAULT_LABEL]


def label_context(label, app_url: str = "") -> dict:
    """Template variables for one label."""
    profile = label_profile(label)
    return {
        "label_name": profile["name"],
        "label_short_name": profile["short_name"],
        "label_logo_url": f"{app_url.rstrip('/')}{profile['logo_path']}",
    }
