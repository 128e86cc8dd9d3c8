"""
Driver registry.

A registry maps backend names to drivers and keeps the single Conn opened for
each name. The host builds one registry at startup and hands it to whatever
needs to open a backend; tests build their own.
"""
import threading
from typing import Any, Dict, List, Optional

import structlog

from paydriver.exceptions import DriverNotFoundError, DuplicateDriverError
from paydriver.payments.base import Conn, PaymentDriver, SessionFactory

logger = structlog.get_logger(__name__)


class DriverRegistry:
    def __init__(self) -> None:
        self._drivers: Dict[str, PaymentDriver] = {}
        self._conns: Dict[str, Conn] = {}
        self._lock = threading.Lock()

    def register(self, name: str, driver: PaymentDriver) -> None:
        if driver is None:
            raise ValueError("Cannot register a nil driver")
        with self._lock:
            if name in self._drivers:
                raise DuplicateDriverError(
                    f"Payment driver already registered: {name}",
                    operation="register", identifier=name,
                )
            self._drivers[name] = driver
        logger.info("payment_driver_registered", driver=name, driver_class=type(driver).__name__)

    def open(self, name: str, session_factory: SessionFactory, route_installer: Any = None,
             config: Optional[str] = None) -> Conn:
        """
        Open the named backend, once per registry. A later call for the same
        name returns the Conn opened first and installs no routes.
        """
        with self._lock:
            driver = self._drivers.get(name)
            if driver is None:
                available = ", ".join(sorted(self._drivers)) or "none"
                raise DriverNotFoundError(
                    f"Unknown payment driver: {name}. Available drivers: {available}",
                    operation="open", identifier=name,
                )
            conn = self._conns.get(name)
            if conn is not None:
                logger.debug("payment_driver_already_open", driver=name)
                return conn
            conn = driver.open(session_factory, route_installer, config)
            self._conns[name] = conn
        logger.info("payment_driver_opened", driver=name)
        return conn

    def drivers(self) -> List[str]:
        return sorted(self._drivers)

    async def close_all(self) -> None:
        with self._lock:
            conns = list(self._conns.items())
            self._conns.clear()
        for name, conn in conns:
            try:
                await conn.close()
            except Exception:
                logger.exception("payment_driver_close_failed", driver=name)
                continue
            logger.info("payment_driver_closed", driver=name)
