"""Resolve the configured pairing transport.

The transport is named in config as "package.module:factory" and is
imported once at daemon startup. The factory is called with the daemon
Config and must return an object implementing PairingTransport.
"""

import importlib
import logging

from sessiond.config import Config
from sessiond.errors import TransportError
from sessiond.protocols import PairingTransport, TransportFactory

logger = logging.getLogger(__name__)


def load_transport_factory(spec: str) -> TransportFactory:
    """Import a transport factory from a "module:attribute" string.

    Raises:
        TransportError: If the string is malformed or cannot be imported.
    """
    module_name, sep, attr_path = spec.partition(":")
    if not sep or not module_name or not attr_path:
        raise TransportError(
            f"Invalid transport {spec!r}, expected 'package.module:factory'"
        )

    try:
        target = importlib.import_module(module_name)
    except ImportError as e:
        raise TransportError(f"Cannot import transport module {module_name!r}: {e}") from e

    for attr in attr_path.split("."):
        try:
            target = getattr(target, attr)
        except AttributeError as e:
            raise TransportError(f"Transport factory {spec!r} not found") from e

    if not callable(target):
        raise TransportError(f"Transport factory {spec!r} is not callable")

    return target


def create_transport(config: Config) -> PairingTransport:
    """Create the transport named in config.

    Raises:
        TransportError: If no transport is configured or it cannot be created.
    """
    if not config.transport:
        raise TransportError("No pairing transport configured (set 'transport')")

    factory = load_transport_factory(config.transport)
    transport = factory(config)
    logger.info(f"Pairing transport loaded: {config.transport}")
    return transport
