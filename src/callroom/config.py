"""Environment settings and startup validation.

``validate_config()`` runs before the server accepts connections so that a
missing config-store credential is a clear startup failure instead of every
page silently falling back to defaults.
"""

import logging
import os
import sys
from dataclasses import dataclass

from callroom.media import PLACEHOLDER_VIDEO_URL

logger = logging.getLogger(__name__)

REQUIRED_VARS = [
    "SUPABASE_URL",
    "SUPABASE_ANON_KEY",
]

OPTIONAL_VARS = [
    "PUBLIC_ORIGIN",
    "PLACEHOLDER_VIDEO_URL",
    "LOG_LEVEL",
    "PORT",
]

DEFAULT_PORT = 8765


@dataclass(frozen=True)
class Settings:
    supabase_url: str = ""
    supabase_anon_key: str = ""
    public_origin: str = ""
    placeholder_video_url: str = PLACEHOLDER_VIDEO_URL
    log_level: str = "INFO"
    port: int = DEFAULT_PORT

    @classmethod
    def from_env(cls) -> "Settings":
        raw_port = os.getenv("PORT", "")
        try:
            port = int(raw_port) if raw_port else DEFAULT_PORT
        except ValueError:
            logger.warning("PORT=%r is not a number, using %d", raw_port, DEFAULT_PORT)
            port = DEFAULT_PORT
        return cls(
            supabase_url=os.getenv("SUPABASE_URL", ""),
            supabase_anon_key=os.getenv("SUPABASE_ANON_KEY", ""),
            public_origin=os.getenv("PUBLIC_ORIGIN", "").rstrip("/"),
            placeholder_video_url=os.getenv("PLACEHOLDER_VIDEO_URL") or PLACEHOLDER_VIDEO_URL,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            port=port,
        )


def validate_config() -> None:
    """Validate environment variables at startup.

    Exits the process with a clear error if any required variable is missing
    or empty.  Logs warnings for missing optional variables.
    """
    missing = [var for var in REQUIRED_VARS if not os.getenv(var)]

    if missing:
        print(
            f"\nFATAL: Missing required environment variables:\n"
            f"  {', '.join(missing)}\n"
            f"\nSet them in .env (local) or in the deployment secrets.\n",
            file=sys.stderr,
        )
        sys.exit(1)

    for var in OPTIONAL_VARS:
        if not os.getenv(var):
            logger.warning("Optional env var %s is not set", var)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
