"""
Connection factory: the entry point applications use.

The factory authenticates lazily on the first ``get_connection`` call and
caches the connection. Concurrent callers queue on an ``asyncio.Lock`` so
only one handshake ever runs per factory.
"""

import asyncio
import logging
from typing import Callable, Optional

from .config import HealthVaultConfiguration
from .connection import HealthVaultConnection
from .errors import InvalidStateError, MissingRequiredPropertiesError
from .transport import Transport

logger = logging.getLogger(__name__)

# Builds the transport for a connection; None means AiohttpTransport
TransportFactory = Callable[[HealthVaultConfiguration], Transport]


class HealthVaultConnectionFactory:
    """Creates and caches one authenticated connection per configuration."""

    def __init__(self, transport_factory: Optional[TransportFactory] = None):
        self._transport_factory = transport_factory
        self._configuration: Optional[HealthVaultConfiguration] = None
        self._connection: Optional[HealthVaultConnection] = None
        self._lock = asyncio.Lock()
        self.connection_attempted = False

    def set_configuration(self, configuration: HealthVaultConfiguration) -> None:
        """
        Set the configuration used to create connections.

        Raises:
            InvalidStateError: If get_connection has been called already.
        """
        if self.connection_attempted:
            raise InvalidStateError("set_configuration cannot be called after get_connection")
        self._configuration = configuration

    async def get_connection(self) -> HealthVaultConnection:
        """
        Get the authenticated connection, creating it on first use.

        Raises:
            InvalidStateError: If called before set_configuration.
            MissingRequiredPropertiesError: If mandatory settings are unset.
        """
        self.connection_attempted = True

        connection = self._connection
        if connection is not None:
            return connection

        async with self._lock:
            # A caller that held the lock before us may have finished the handshake
            if self._connection is not None:
                return self._connection

            config = self._configuration
            if config is None:
                raise InvalidStateError("get_connection cannot be called before set_configuration")

            missing = config.missing_required_properties()
            if missing:
                raise MissingRequiredPropertiesError(missing)

            config.lock()

            transport = self._transport_factory(config) if self._transport_factory else None
            connection = HealthVaultConnection(config, transport)
            try:
                await connection.authenticate()
            except BaseException:
                # Includes cancellation: the orphaned handshake must not keep running
                await connection.close()
                raise

            logger.info(f"Connected to {config.service_url} as {config.master_application_id}")
            self._connection = connection
            return connection
