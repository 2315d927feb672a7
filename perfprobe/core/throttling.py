from typing import Dict, Mapping, Optional, Any
from dataclasses import dataclass
from types import MappingProxyType

from .perftest import ThrottlingMode


MBPS = 1024 * 1024
KBPS = 1024


@dataclass(frozen=True)
class ThrottlingProfile:
    download_bps: float
    upload_bps: float
    latency_ms: float
    cpu_slowdown: float
    viewport_width: int
    viewport_height: int
    user_agent: Optional[str]

    @property
    def viewport(self) -> Dict[str, int]:
        return {'width': self.viewport_width, 'height': self.viewport_height}

    def network_conditions(self) -> Dict[str, Any]:
        """Payload for CDP Network.emulateNetworkConditions (throughput in bytes/s)."""
        return {
            'offline': False,
            'downloadThroughput': self.download_bps / 8,
            'uploadThroughput': self.upload_bps / 8,
            'latency': self.latency_ms,
        }


# Lighthouse settings used by PageSpeed Insights
MOBILE_USER_AGENT = (
    'Mozilla/5.0 (Linux; Android 11; moto g power (2022)) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/109.0.0.0 Mobile Safari/537.36'
)
DESKTOP_USER_AGENT = (
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/109.0.0.0 Safari/537.36'
)

THROTTLING_PROFILES: Mapping[ThrottlingMode, ThrottlingProfile] = MappingProxyType({
    ThrottlingMode.PAGESPEED_MOBILE: ThrottlingProfile(
        download_bps=1.6 * MBPS,
        upload_bps=750 * KBPS,
        latency_ms=150,
        cpu_slowdown=4,
        viewport_width=412,
        viewport_height=823,
        user_agent=MOBILE_USER_AGENT,
    ),
    ThrottlingMode.PAGESPEED_DESKTOP: ThrottlingProfile(
        download_bps=10 * MBPS,
        upload_bps=5 * MBPS,
        latency_ms=40,
        cpu_slowdown=1,
        viewport_width=1350,
        viewport_height=940,
        user_agent=DESKTOP_USER_AGENT,
    ),
    # Keeps the browser's own user agent
    ThrottlingMode.CUSTOM: ThrottlingProfile(
        download_bps=1.5 * MBPS,
        upload_bps=750 * KBPS,
        latency_ms=40,
        cpu_slowdown=4,
        viewport_width=1280,
        viewport_height=800,
        user_agent=None,
    ),
})


def get_profile(mode: ThrottlingMode) -> ThrottlingProfile:
    return THROTTLING_PROFILES[ThrottlingMode(mode)]
