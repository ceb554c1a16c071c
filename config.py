# config.py - Configuration management

import os
from urllib.parse import urlparse

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() not in {"false", "0", "no"}


class Config:
    """
    Configuration for the link audit engine.

    Values come from the environment (or a .env file). Keyword overrides take
    precedence, e.g. ``Config(SITE_URL="https://mysite.com")``.
    """

    def __init__(self, **overrides):
        # Site
        self.SITE_URL = os.getenv("SITE_URL")

        # Identity namespace
        self.LINK_ID_ATTRIBUTE = os.getenv("LINK_ID_ATTRIBUTE", "data-link-id")
        self.LINK_STATUS_ATTRIBUTE = os.getenv("LINK_STATUS_ATTRIBUTE", "data-link-status")

        # Network policy for probes
        self.PROBE_TIMEOUT = float(os.getenv("PROBE_TIMEOUT", "10"))
        self.PROBE_MAX_REDIRECTS = int(os.getenv("PROBE_MAX_REDIRECTS", "5"))
        self.PROBE_USER_AGENT = os.getenv("PROBE_USER_AGENT", DEFAULT_USER_AGENT)
        self.PROBE_MAX_RESPONSE_BYTES = int(os.getenv("PROBE_MAX_RESPONSE_BYTES", "1024"))
        self.ENABLE_RAW_SOCKET_PROBE = _env_flag("ENABLE_RAW_SOCKET_PROBE", "true")

        # Batch scheduling
        self.CHECK_BATCH_SIZE = int(os.getenv("CHECK_BATCH_SIZE", "10"))
        self.CHECK_MAX_CONCURRENCY = int(os.getenv("CHECK_MAX_CONCURRENCY", "0")) or None
        self.BATCH_DELAY_SECONDS = float(os.getenv("BATCH_DELAY_SECONDS", "0.1"))
        self.POST_DELAY_SECONDS = float(os.getenv("POST_DELAY_SECONDS", "0.2"))

        # Content store (WordPress plugin REST API)
        self.WP_API_URL = os.getenv("WP_API_URL")
        self.WP_NONCE = os.getenv("WP_NONCE")
        self.WP_USERNAME = os.getenv("WP_USERNAME")
        self.WP_APP_PASSWORD = os.getenv("WP_APP_PASSWORD")
        self.WP_TIMEOUT = float(os.getenv("WP_TIMEOUT", "30"))

        for key, value in overrides.items():
            setattr(self, key.upper(), value)

        if not self.CHECK_MAX_CONCURRENCY:
            self.CHECK_MAX_CONCURRENCY = self.CHECK_BATCH_SIZE

        # Validate required settings
        self._validate_config()

        self.SITE_URL = self.SITE_URL.rstrip("/")
        self.SITE_HOST = urlparse(self.SITE_URL).hostname
        if not self.WP_API_URL:
            self.WP_API_URL = f"{self.SITE_URL}/wp-json/wp-link-auditor/v1/"
        elif not self.WP_API_URL.endswith("/"):
            self.WP_API_URL = f"{self.WP_API_URL}/"

    def _validate_config(self):
        """Check that required settings are present and usable"""
        if not self.SITE_URL:
            raise ValueError(
                "Missing required setting: SITE_URL\n"
                "Please check your .env file."
            )

        if not urlparse(self.SITE_URL).hostname:
            raise ValueError(f"SITE_URL has no hostname: {self.SITE_URL!r}")

        if self.CHECK_BATCH_SIZE < 1 or self.CHECK_MAX_CONCURRENCY < 1:
            raise ValueError("CHECK_BATCH_SIZE and CHECK_MAX_CONCURRENCY must be positive")

    @property
    def site_origin(self) -> str:
        parsed = urlparse(self.SITE_URL)
        return f"{parsed.scheme}://{parsed.netloc}"

    def __str__(self):
        """String representation for debugging (without exposing credentials)"""
        return f"""
Config Status:
- Site: {self.SITE_URL}
- API: {self.WP_API_URL}
- Nonce: {'✅' if self.WP_NONCE else '❌'}
- Application Password: {'✅' if self.WP_APP_PASSWORD else '❌'}
- Probe timeout: {self.PROBE_TIMEOUT}s, redirects: {self.PROBE_MAX_REDIRECTS}
- Batch size: {self.CHECK_BATCH_SIZE}, concurrency: {self.CHECK_MAX_CONCURRENCY}
        """
