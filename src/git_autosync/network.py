import logging
import time
from dataclasses import dataclass, field

import httpx

from .constants import APP_NAME, NETWORK_INTERVAL, PROBE_TIMEOUT, PROBE_URL, USER_AGENT

logger = logging.getLogger(APP_NAME)


@dataclass
class NetworkStatus:
    """Reachability of the remote host, written only by ``NetworkMonitor``.

    Attributes:
        is_online (bool): Result of the last probe. Assumed True until probed.
        last_check (float): Unix timestamp of the last probe.
    """

    is_online: bool = True
    last_check: float = field(default_factory=time.time)


class NetworkMonitor:
    """Periodically probes GitHub to decide whether syncing can proceed.

    Attributes:
        status (NetworkStatus): The shared reachability flag.
        interval (float): Seconds between probes.
    """

    def __init__(
        self,
        status: NetworkStatus,
        interval: float = NETWORK_INTERVAL,
        url: str = PROBE_URL,
        timeout: float = PROBE_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.status = status
        self.interval = interval
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def probe(self) -> bool:
        """Performs one lightweight reachability check.

        Any failure (timeout, DNS, TLS, server error) counts as offline; this
        method never raises.

        Returns:
            bool: The new reachability flag.
        """
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={"User-Agent": USER_AGENT},
                follow_redirects=True,
            ) as client:
                response = await client.head(self.url)
            online = response.status_code < 500
        except Exception as e:
            logger.debug(f"Network probe failed: {e!r}")
            online = False

        if online != self.status.is_online:
            if online:
                logger.info("ONLINE: GitHub is reachable again.")
            else:
                logger.warning(
                    "OFFLINE: GitHub is unreachable. Syncs will fail until it returns."
                )

        self.status.is_online = online
        self.status.last_check = time.time()
        return online
