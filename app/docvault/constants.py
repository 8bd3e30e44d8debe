"""
Central constants for the document vault.
"""
from __future__ import annotations

# Access log vocabulary
ACCESS_TYPES = ("redeem", "view", "download")
ACCESS_METHODS = ("payload", "direct", "api")

# Upload content types accepted by the HTTP surface
ALLOWED_CONTENT_TYPES = frozenset({"application/pdf", "image/jpeg", "image/jpg", "image/png"})

# Content-Type served when the record carries none
CATEGORY_CONTENT_TYPES = {
    "pdf": "application/pdf",
    "image": "image/jpeg",
    "xray": "image/jpeg",
    "prescription": "application/pdf",
    "lab-report": "application/pdf",
    "other": "application/octet-stream",
}

# Preset share lifetimes offered to owners (minutes)
TTL_PRESETS = (
    {"label": "30 minutes", "minutes": 30, "description": "Quick access for immediate consultation"},
    {"label": "2 hours", "minutes": 120, "description": "Extended access for detailed review"},
    {"label": "24 hours", "minutes": 1440, "description": "Full day access for comprehensive analysis"},
    {"label": "7 days", "minutes": 10080, "description": "Week-long access for ongoing treatment"},
)
DEFAULT_TTL_MINUTES = 30
MAX_TTL_MINUTES = 10080

DEFAULT_LOG_LIMIT = 50
MAX_LOG_LIMIT = 500

# Logger that operators alert on
OPS_LOGGER_NAME = "docvault.ops"
