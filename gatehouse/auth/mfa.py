"""Time-based one-time passwords (TOTP) for multi-factor login."""

import logging

import pyotp

from .config.schema import MfaConfig
from .utils import Clock, SystemClock

logger = logging.getLogger(__name__)


class MfaVerifier:
    """Generates TOTP secrets and verifies codes against them."""

    def __init__(self, config: MfaConfig | None = None, clock: Clock | None = None):
        self.config = config or MfaConfig()
        self.clock = clock or SystemClock()

    def generate_secret(self) -> str:
        return pyotp.random_base32()

    def provisioning_uri(self, secret: str, account_name: str) -> str:
        """URI for authenticator apps, usually rendered as a QR code."""
        return pyotp.TOTP(secret).provisioning_uri(
            name=account_name, issuer_name=self.config.issuer
        )

    def current_code(self, secret: str) -> str:
        return pyotp.TOTP(secret).at(self.clock.now())

    def verify(self, secret: str | None, code: str | None) -> bool:
        if not secret or not code:
            return False

        code = code.strip()
        if not code.isdigit():
            return False

        valid = pyotp.TOTP(secret).verify(
            code, for_time=self.clock.now(), valid_window=self.config.valid_window
        )
        if not valid:
            logger.debug("TOTP code rejected")
        return valid
