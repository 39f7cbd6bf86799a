"""Tests for transport resolution."""

import pytest

from sessiond.config import Config
from sessiond.errors import TransportError
from sessiond.transport_loader import create_transport, load_transport_factory


class StubTransport:
    def __init__(self, config):
        self.config = config

    async def open(self, request):
        raise NotImplementedError


class Factories:
    nested = StubTransport


NOT_CALLABLE = 42


class TestLoadTransportFactory:
    """Test "module:attribute" resolution."""

    def test_resolves_attribute(self):
        assert load_transport_factory(f"{__name__}:StubTransport") is StubTransport

    def test_resolves_dotted_attribute(self):
        assert load_transport_factory(f"{__name__}:Factories.nested") is StubTransport

    @pytest.mark.parametrize("spec", ["", "no_colon", ":factory", "module:"])
    def test_malformed_spec(self, spec):
        with pytest.raises(TransportError, match="Invalid transport"):
            load_transport_factory(spec)

    def test_missing_module(self):
        with pytest.raises(TransportError, match="Cannot import"):
            load_transport_factory("sessiond_no_such_module:factory")

    def test_missing_attribute(self):
        with pytest.raises(TransportError, match="not found"):
            load_transport_factory(f"{__name__}:missing_factory")

    def test_not_callable(self):
        with pytest.raises(TransportError, match="not callable"):
            load_transport_factory(f"{__name__}:NOT_CALLABLE")


class TestCreateTransport:
    """Test transport creation from config."""

    def test_calls_factory_with_config(self):
        config = Config(transport=f"{__name__}:StubTransport")

        transport = create_transport(config)

        assert isinstance(transport, StubTransport)
        assert transport.config is config

    def test_requires_configured_transport(self):
        with pytest.raises(TransportError, match="No pairing transport"):
            create_transport(Config())
