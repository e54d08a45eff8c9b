"""High-level BSN.cloud client.

Wires the authenticator, network context, transport, pagers and upload engine
together around one shared ``httpx.Client``.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from .core.auth import Authenticator
from .core.config import Config
from .core.errors import ValidationError
from .core.models import (
    ContentFile,
    Device,
    DeviceError,
    Network,
    SetupRecord,
    Subscription,
    UploadResult,
)
from .core.network import NetworkContext
from .core.pager import Pager
from .core.retry import RetryPolicy
from .core.transport import RequestOptions, Transport, new_http_client
from .core.upload import ContentSource, ProgressCallback, UploadEngine

if TYPE_CHECKING:
    from typing import Self

    import httpx

logger = logging.getLogger(__name__)

# API endpoints (relative to the versioned API root)
NETWORKS_ENDPOINT = "/Self/Networks"
SESSION_NETWORK_ENDPOINT = "/Self/Session/Network"
DEVICES_ENDPOINT = "/Devices"
CONTENT_ENDPOINT = "/Content"
SUBSCRIPTIONS_ENDPOINT = "/Subscriptions"

# Relative to the provisioning host
SETUPS_ENDPOINT = "/rest-setup/v3/setup"


class BSNClient:
    """Client for the BSN.cloud API.

    Example:
        >>> with BSNClient.from_config() as client:
        ...     client.select_network("Production")
        ...     for device in client.devices.all():
        ...         print(device.serial)
        ...     client.upload_file("video.mp4", "/media/")

    Attributes:
        config: Effective configuration.
        auth: Token lifecycle for the configured credentials.
        network: Selected-network context; scoped calls read it.
        transport: Authenticated, classified HTTP requests.
        uploads: Chunked upload engine.
        devices: Pager over registered players.
        content: Pager over the content library.
        subscriptions: Pager over device subscriptions.
        setups: Pager over provisioning setup records.
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        http_client: httpx.Client | None = None,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        **options: Any,
    ) -> None:
        """Initialize the client.

        Args:
            config: Base configuration. If None, loads it from the default
                file and environment.
            http_client: Shared HTTP client. A private one is created and
                closed with the client when omitted.
            clock: Wall clock used for token expiry.
            monotonic: Clock used for upload polling deadlines.
            sleep: Used for retry backoff and polling waits.
            **options: Config field overrides, applied last.

        Raises:
            ConfigurationError: If required settings are missing or invalid.
        """
        config = config or Config.load()
        if options:
            config = config.with_options(**options)
        config.validate_required()
        self.config = config

        self._owns_http_client = http_client is None
        self._http_client = http_client or new_http_client(config)

        self.auth = Authenticator(config, self._http_client, clock=clock)
        self.network = NetworkContext(
            self._fetch_networks,
            bind=self._bind_network,
            default_name=config.network_name,
        )
        self.transport = Transport(
            config,
            self.auth,
            self._http_client,
            network=self.network,
            retry_policy=RetryPolicy(config.max_attempts, sleep=sleep),
        )
        self.uploads = UploadEngine(self.transport, config, clock=monotonic, sleep=sleep)

        api = config.api_root
        self.devices: Pager[Device] = Pager(
            self.transport, api + DEVICES_ENDPOINT, Device.model_validate
        )
        self.content: Pager[ContentFile] = Pager(
            self.transport, api + CONTENT_ENDPOINT, ContentFile.model_validate
        )
        self.subscriptions: Pager[Subscription] = Pager(
            self.transport, api + SUBSCRIPTIONS_ENDPOINT, Subscription.model_validate
        )
        self.setups: Pager[SetupRecord] = Pager(
            self.transport,
            config.provision_base_url.rstrip("/") + SETUPS_ENDPOINT,
            SetupRecord.model_validate,
        )

    @classmethod
    def from_config(cls, config_path: str | Path | None = None, **options: Any) -> Self:
        """Create a client from the config file, environment and ``options``.

        Args:
            config_path: Path to config file. If None, uses default location.
            **options: Config field overrides.
        """
        return cls(Config.load(config_path, **options))

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------

    def authenticate(self, *, force: bool = False) -> None:
        self.auth.authenticate(force=force)

    def get_access_token(self) -> str:
        return self.auth.get_access_token()

    @property
    def is_authenticated(self) -> bool:
        return self.auth.is_authenticated

    # -------------------------------------------------------------------------
    # Networks
    # -------------------------------------------------------------------------

    def get_networks(self) -> list[Network]:
        """List the networks available to the credentials."""
        return self.network.list_networks()

    def set_network(self, network: Network) -> Network:
        """Select ``network`` for subsequent scoped calls."""
        return self.network.set_network(network)

    def select_network(self, name: str) -> Network:
        """Select a network by name (case-insensitive).

        Raises:
            NetworkNotFoundError: If no network is called ``name``.
        """
        return self.network.resolve_by_name(name)

    def current_network(self) -> Network:
        return self.network.current_network()

    def ensure_network(self, name: str | None = None) -> Network:
        """Select a network if none is selected yet.

        Uses ``name``, then the configured network name, then the only
        available network.
        """
        return self.network.ensure_ready(name)

    def _fetch_networks(self) -> list[Network]:
        body = self.transport.request("GET", self.config.api_root + NETWORKS_ENDPOINT)
        items = body.get("items", []) if isinstance(body, dict) else body
        if not isinstance(items, list):
            raise ValidationError("unexpected network list response", code="invalid_response")
        try:
            return [Network.model_validate(item) for item in items]
        except PydanticValidationError as e:
            raise ValidationError(
                "unexpected item in network list response",
                code="invalid_response",
                details=str(e),
            ) from e

    def _bind_network(self, network: Network, token: str | None = None) -> str:
        token = token or self.auth.get_access_token()
        logger.debug("Selecting network %s server-side", network)
        self.transport.request(
            "PUT",
            self.config.api_root + SESSION_NETWORK_ENDPOINT,
            json={"id": network.id},
            options=RequestOptions(retry=True, token=token),
        )
        return token

    # -------------------------------------------------------------------------
    # Resources
    # -------------------------------------------------------------------------

    def device_errors(self, device_id: int) -> Pager[DeviceError]:
        """Pager over the errors reported by one device."""
        return Pager(
            self.transport,
            f"{self.config.api_root}{DEVICES_ENDPOINT}/{device_id}/Errors",
            DeviceError.model_validate,
        )

    def delete_content(self, content_id: int) -> None:
        """Delete a file from the content library. Never retried."""
        self.transport.request(
            "DELETE",
            f"{self.config.api_root}{CONTENT_ENDPOINT}/{content_id}",
            options=RequestOptions(scoped=True),
        )
        logger.info("Deleted content %s", content_id)

    def upload_file(
        self,
        path: str | Path,
        virtual_path: str = "/",
        *,
        name: str | None = None,
        progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> UploadResult:
        """Upload a local file to the content library."""
        return self.uploads.upload_file(
            path, virtual_path, name=name, progress=progress, cancel=cancel
        )

    def upload_bytes(
        self,
        name: str,
        data: bytes,
        virtual_path: str = "/",
        *,
        progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> UploadResult:
        return self.uploads.upload_bytes(
            name, data, virtual_path, progress=progress, cancel=cancel
        )

    def upload_stream(
        self,
        name: str,
        stream: IO[bytes],
        virtual_path: str = "/",
        *,
        progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> UploadResult:
        """Upload from an open binary stream; the stream is left open."""
        return self.uploads.upload_stream(
            name, stream, virtual_path, progress=progress, cancel=cancel
        )

    def upload(
        self,
        source: ContentSource,
        virtual_path: str = "/",
        *,
        progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> UploadResult:
        return self.uploads.upload(source, virtual_path, progress=progress, cancel=cancel)

    def request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send a request through the transport; see :meth:`Transport.request`."""
        return self.transport.request(method, path, **kwargs)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        if self._owns_http_client:
            self._http_client.close()

    def __enter__(self) -> Self:
        """Context manager entry."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Context manager exit - close the HTTP client if owned."""
        self.close()
