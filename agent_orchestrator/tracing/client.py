"""
Langfuse tracing client wrapper.

Uses the Langfuse SDK v3 (OpenTelemetry-based) API. The client is created
once by the dependency container and handed to every run; when credentials
are missing or the auth check fails, tracing stays disabled and every
operation is a no-op.
"""

import logging
from typing import Any, Optional

from langfuse import Langfuse

from ..models import LangfuseConfig

logger = logging.getLogger(__name__)


class TracingClient:
    """
    Langfuse client wrapper with graceful degradation.

    Missing credentials or an unreachable host never affect the agent run.
    """

    def __init__(
        self,
        public_key: str = "",
        secret_key: str = "",
        host: str = "",
        debug: bool = False,
    ):
        self._client: Optional[Langfuse] = None
        self._enabled = False
        self._error: Optional[str] = None

        if not public_key or not secret_key:
            self._error = "Langfuse credentials not configured"
            logger.debug(f"Tracing disabled: {self._error}")
            return

        if host and not host.startswith(("http://", "https://")):
            logger.warning(
                f"LANGFUSE_HOST '{host}' may be malformed. "
                "Expected format: http://hostname:port or https://hostname:port."
            )

        try:
            kwargs: dict[str, Any] = {
                "public_key": public_key,
                "secret_key": secret_key,
                "debug": debug,
            }
            if host:
                kwargs["host"] = host
            self._client = Langfuse(**kwargs)
        except Exception as e:
            self._error = f"Failed to initialize Langfuse client: {e}"
            logger.warning(f"Tracing disabled: {self._error}")
            return

        if not self._validate_connectivity():
            return

        self._enabled = True
        logger.info(f"Langfuse tracing enabled (host: {host or 'default'})")

    @classmethod
    def from_config(cls, config: LangfuseConfig) -> "TracingClient":
        return cls(
            public_key=config.public_key,
            secret_key=config.secret_key,
            host=config.host,
            debug=config.debug,
        )

    def _validate_connectivity(self) -> bool:
        """
        Validate connectivity to the Langfuse server at startup.

        Returns:
            True if auth_check() succeeded, False otherwise (tracing disabled)
        """
        try:
            ok = self._client.auth_check()
        except Exception as e:
            self._error = f"Langfuse connectivity check failed: {e}"
            ok = False
        if not ok:
            self._error = self._error or (
                "Langfuse auth_check() failed - endpoint may be unreachable or "
                "credentials may be invalid"
            )
            logger.warning(f"Tracing disabled: {self._error}")
            self._client = None
        return bool(ok)

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def error(self) -> Optional[str]:
        """Reason tracing is disabled, if it is."""
        return self._error

    @property
    def client(self) -> Optional[Langfuse]:
        return self._client

    def flush(self) -> None:
        """Flush pending events to Langfuse."""
        if not self._enabled or not self._client:
            return
        try:
            self._client.flush()
        except Exception as e:
            logger.warning(f"Failed to flush tracing events: {e}")

    def shutdown(self) -> None:
        """Shutdown the client, flushing remaining events."""
        if not self._enabled or not self._client:
            return
        try:
            self._client.shutdown()
            logger.info("Langfuse tracing client shutdown complete")
        except Exception as e:
            logger.warning(f"Error during tracing client shutdown: {e}")
