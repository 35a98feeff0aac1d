"""
Constants used across the bet settlement system.
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


# Token economy
STARTING_TOKEN_BALANCE = int(os.getenv("STARTING_TOKEN_BALANCE", "100"))
MIN_STAKE = 1  # Smallest stake a bet can carry

# Product rules
ENFORCE_IMPARTIAL_JUDGE = _env_flag("ENFORCE_IMPARTIAL_JUDGE", "true")  # Judge may not be a stakeholder
REQUIRE_FRIENDSHIP_FOR_INVITES = _env_flag("REQUIRE_FRIENDSHIP_FOR_INVITES", "false")

# Text limits
MAX_TITLE_LENGTH = 200
NOTIFICATION_TITLE_PREVIEW = 100  # Bet titles are truncated to this in notification text
