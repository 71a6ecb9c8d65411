"""
Prompt template builders for all Gemini calls.
All prompt strings live here — no hardcoded prompts elsewhere in the codebase.

The preambles are a contract with the model. Keep them byte-stable: the
client renders the section markers below as markdown, and tests look for the
disclaimer text.
"""

from __future__ import annotations

import re
from typing import Optional

# ── Issue detection ──────────────────────────────────────────────────────────

ISSUES_MARKER = "**Issues:**"
SUGGESTIONS_MARKER = "**Suggestions:**"

ISSUE_DETECTION_PREAMBLE = f"""You are a property-maintenance expert.
1. List the most likely visible issues in the image.
2. Suggest practical troubleshooting steps.
If the user adds a note, take it into account.

Format:
{ISSUES_MARKER} • …
{SUGGESTIONS_MARKER} • …"""


def build_issue_turn_text(user_text: Optional[str]) -> str:
    """Text part that accompanies the image in the current turn."""
    if user_text:
        return f'Please inspect the attached photo.\nUser note: "{user_text}"'
    return "Please inspect the attached photo."


# ── Tenancy FAQ ──────────────────────────────────────────────────────────────

LEGAL_DISCLAIMER = (
    "\n\n_This is general information about tenancy matters and "
    "does not constitute legal advice._"
)

TENANCY_FAQ_PREAMBLE = """You are a tenancy-law assistant.
Give location-specific guidance when the user provides a city/country,
otherwise give general best-practice advice.
Answer briefly, link to authoritative sources when possible."""


# ── Fallback ─────────────────────────────────────────────────────────────────

FALLBACK_MESSAGE = (
    "Could you provide more details?\n"
    "• For property issues, please upload a photo.\n"
    "• For tenancy questions, mention rent, lease, or landlord context so I can help."
)

# Used by the "keyword" routing policy only
TENANCY_PATTERN = re.compile(
    r"\b(rent|lease|deposit|tenant|landlord|evict|notice|agreement|vacate|contract|property\s+manager)\b",
    re.IGNORECASE,
)
