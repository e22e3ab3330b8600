"""Duration ceiling for a call session.

The limit comes from, in priority order: the entry link's ``seconds`` query
parameter, the site's remote ``call_config`` record, and a built-in default of
30 minutes.  A valid link value also switches the page into direct call mode.
"""

import logging
import re
from typing import Mapping, Optional
from urllib.parse import parse_qs, urlsplit

from callroom.remote_config import RemoteMediaConfig

logger = logging.getLogger(__name__)

CALL_DURATION_LIMIT_MINUTES = 30
DEFAULT_DURATION_LIMIT_SECONDS = CALL_DURATION_LIMIT_MINUTES * 60
SECONDS_PARAM = "seconds"

# ASCII digits only, capped well below the int() conversion limit
_DIGITS = re.compile(r"[0-9]{1,9}")


def parse_seconds_param(raw: Optional[str]) -> Optional[int]:
    """Parse a ``seconds`` value into a positive int, or None if unusable."""
    if raw is None:
        return None
    text = raw.strip()
    if not _DIGITS.fullmatch(text):
        return None
    value = int(text)
    return value if value > 0 else None


class DurationLimitResolver:
    def __init__(self, link_seconds: Optional[int] = None):
        self._link_seconds = link_seconds
        self._remote_seconds: Optional[int] = None
        self._remote_applied = False

    @classmethod
    def from_query(cls, params: Mapping[str, str]) -> "DurationLimitResolver":
        raw = params.get(SECONDS_PARAM)
        parsed = parse_seconds_param(raw)
        if raw is not None and parsed is None:
            logger.info("Ignoring malformed seconds parameter %r", raw)
        return cls(link_seconds=parsed)

    @classmethod
    def from_entry_url(cls, url: str) -> "DurationLimitResolver":
        query = parse_qs(urlsplit(url).query)
        return cls.from_query({key: values[0] for key, values in query.items() if values})

    @property
    def explicit_duration_present(self) -> bool:
        return self._link_seconds is not None

    @property
    def limit_seconds(self) -> Optional[int]:
        if self._link_seconds is not None:
            return self._link_seconds
        return self._remote_seconds

    @property
    def effective_limit_seconds(self) -> int:
        limit = self.limit_seconds
        return limit if limit is not None else DEFAULT_DURATION_LIMIT_SECONDS

    def apply_remote_config(self, config: Optional[RemoteMediaConfig]) -> bool:
        """Fill an unset limit from remote config. Only the first fill counts."""
        if config is None or config.duration_seconds is None:
            return False
        if self.limit_seconds is not None or self._remote_applied:
            logger.debug(
                "Remote duration %ss ignored, limit already resolved to %ss",
                config.duration_seconds,
                self.limit_seconds,
            )
            return False
        self._remote_seconds = config.duration_seconds
        self._remote_applied = True
        logger.info("Duration limit resolved from remote config: %ss", config.duration_seconds)
        return True
