import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from callroom.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

CONFIG_TABLE = "call_config"
CONFIG_COLUMNS = "video_url,audio_url,duration_seconds"


@dataclass(frozen=True)
class RemoteMediaConfig:
    video_url: Optional[str] = None
    audio_url: Optional[str] = None
    duration_seconds: Optional[int] = None

    @classmethod
    def from_row(cls, row: dict) -> "RemoteMediaConfig":
        return cls(
            video_url=row.get("video_url") or None,
            audio_url=row.get("audio_url") or None,
            duration_seconds=_positive_int(row.get("duration_seconds")),
        )

    def to_dict(self) -> dict:
        return {
            "video_url": self.video_url,
            "audio_url": self.audio_url,
            "duration_seconds": self.duration_seconds,
        }


def _positive_int(value) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value if value > 0 else None


class CallConfigClient:
    """Read-only client for the per-site ``call_config`` table (PostgREST).

    A missing record, an HTTP error or a transport failure all resolve to
    ``None`` so the page falls back to its built-in defaults.  The fetch is
    guarded by a circuit breaker shared across page loads.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._circuit = CircuitBreaker(
            failure_threshold=3,
            cooldown_seconds=30.0,
            label="call_config store",
        )
        if client is not None:
            self._client = client
        else:
            headers = {"Accept": "application/json"}
            if api_key:
                headers["apikey"] = api_key
                headers["Authorization"] = f"Bearer {api_key}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
            )

    async def close(self):
        await self._client.aclose()

    async def fetch(self, site_id: str) -> Optional[RemoteMediaConfig]:
        if not self._circuit.should_try():
            logger.warning("Config circuit breaker open, using defaults for %s", site_id)
            return None
        try:
            resp = await self._client.get(
                f"/rest/v1/{CONFIG_TABLE}",
                params={
                    "select": CONFIG_COLUMNS,
                    "site_id": f"eq.{site_id}",
                    "limit": "1",
                },
            )
            resp.raise_for_status()
            rows = resp.json()
        except Exception as e:
            self._circuit.record_failure()
            logger.error("call_config fetch failed for %s: %s", site_id, e)
            return None

        self._circuit.record_success()
        if not isinstance(rows, list) or not rows:
            logger.info("No call_config record for %s, using defaults", site_id)
            return None
        config = RemoteMediaConfig.from_row(rows[0])
        logger.info("Loaded call_config for %s: %s", site_id, config)
        return config
