"""Tests for the driver registry."""
from unittest.mock import patch

import pytest
from fastapi import FastAPI

from paydriver.exceptions import DriverNotFoundError, DuplicateDriverError
from paydriver.payments import DriverRegistry, MockDriver, register_builtin_drivers
from paydriver.payments.conn import CardConn


def test_register_same_name_twice_fails():
    registry = DriverRegistry()
    registry.register("mock", MockDriver())

    with pytest.raises(DuplicateDriverError) as exc_info:
        registry.register("mock", MockDriver())
    assert exc_info.value.identifier == "mock"


def test_register_none_driver_fails():
    with pytest.raises(ValueError):
        DriverRegistry().register("mock", None)


def test_open_unregistered_name_fails(session_factory):
    registry = DriverRegistry()
    registry.register("mock", MockDriver())

    with pytest.raises(DriverNotFoundError) as exc_info:
        registry.open("paypal", session_factory)
    assert "Available drivers: mock" in str(exc_info.value)


def test_open_returns_conn_bound_to_driver_backend(registry, backend, session_factory):
    conn = registry.open("mock", session_factory)

    assert isinstance(conn, CardConn)
    assert conn.backend is backend
    assert conn.session_factory is session_factory


def test_open_is_once_per_name(registry, session_factory):
    app = FastAPI()
    with patch("paydriver.apis.v1.endpoints.cards.install_card_routes") as install:
        first = registry.open("mock", session_factory, app)
        second = registry.open("mock", session_factory, app)

    assert first is second
    install.assert_called_once_with(app, first, "mock")


def test_open_installs_card_routes(registry, session_factory):
    app = FastAPI()
    registry.open("mock", session_factory, app)

    paths = app.openapi()["paths"]
    assert {"post", "delete"} <= set(paths["/api/cards"])


def test_registries_are_independent(session_factory):
    one = DriverRegistry()
    two = DriverRegistry()
    one.register("mock", MockDriver())
    two.register("mock", MockDriver())

    assert one.open("mock", session_factory) is not two.open("mock", session_factory)


def test_builtin_drivers():
    registry = register_builtin_drivers(DriverRegistry())
    assert registry.drivers() == ["mock", "stripe"]


def test_stripe_driver_uses_explicit_config_key(session_factory):
    registry = register_builtin_drivers(DriverRegistry())
    conn = registry.open("stripe", session_factory, config="sk_test_123")

    assert conn.backend.name == "stripe"
    assert conn.backend.api_key == "sk_test_123"


@pytest.mark.asyncio
async def test_close_all_forgets_opened_conns(registry, session_factory):
    first = registry.open("mock", session_factory)
    await registry.close_all()

    assert registry.open("mock", session_factory) is not first


@pytest.mark.asyncio
async def test_close_all_closes_every_conn_when_one_fails(session_factory):
    registry = DriverRegistry()
    registry.register("broken", MockDriver())
    registry.register("mock", MockDriver())
    broken = registry.open("broken", session_factory)
    healthy = registry.open("mock", session_factory)

    with patch.object(broken.backend, "close", side_effect=RuntimeError("socket already closed")), \
            patch.object(healthy.backend, "close") as healthy_close:
        await registry.close_all()

    healthy_close.assert_called_once_with()
    assert registry.open("mock", session_factory) is not healthy
