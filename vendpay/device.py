from typing import Optional, Protocol

import requests

from vendpay import config
from vendpay.logger import get_logger

logger = get_logger("vendpay.device")


class DeviceAvailabilityChecker(Protocol):
    def check_online(self, device_ref: str) -> bool:
        ...


class StaticDeviceChecker:
    """Reports every device with a reference as online.

    Used when no device gateway is configured.
    """

    def check_online(self, device_ref: str) -> bool:
        return bool(device_ref)


class HttpDeviceChecker:
    """Asks the device gateway whether a machine controller is reachable."""

    def __init__(self, base_url: str, timeout: float = config.DEVICE_CHECK_TIMEOUT, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def check_online(self, device_ref: str) -> bool:
        if not device_ref:
            return False
        url = f"{self.base_url}/devices/{device_ref}/online"
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Device check failed for {device_ref}: {e}")
            return False
        return data.get("online") is True


def default_device_checker() -> DeviceAvailabilityChecker:
    if config.DEVICE_GATEWAY_URL:
        return HttpDeviceChecker(config.DEVICE_GATEWAY_URL)
    return StaticDeviceChecker()
