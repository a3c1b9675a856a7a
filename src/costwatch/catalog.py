import math
import threading
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterator

from costwatch.errors import ServiceAlreadyRegisteredError
from costwatch.provider.base import Metric, Service

_CENT = Decimal("0.01")


def round_cents(value: "Decimal") -> "float":
    """
    rounds a currency amount to whole cents, ties away from zero.

    This is the only place costs get rounded. Callers divide and
    multiply in Decimal first and round once at the end.
    """
    return float(value.quantize(_CENT, rounding=ROUND_HALF_UP))


def _to_decimal(value: "float") -> "Decimal":
    # repr gives the shortest string that round-trips the float, so
    # 1.005 becomes Decimal("1.005") instead of its binary expansion
    return Decimal(repr(value))


class Registry:
    """
    Registry holds the services known to this process, keyed by
    their label. It is filled once during startup wiring and then
    shared by reference with the sync engine and the catalog.
    """

    def __init__(self) -> "None":
        self._lock: "threading.Lock" = threading.Lock()
        self._services: "dict[str, Service]" = {}

    def register(self, service: "Service") -> "None":
        with self._lock:
            if service.label in self._services:
                raise ServiceAlreadyRegisteredError(
                    f"service {service.label!r} already registered",
                    context={"service": service.label},
                )
            self._services[service.label] = service

    def services(self) -> "list[Service]":
        with self._lock:
            return list(self._services.values())

    def find_service(self, label: "str") -> "Service | None":
        with self._lock:
            return self._services.get(label)

    def find_metric(self, service: "str", metric: "str") -> "Metric | None":
        svc = self.find_service(service)
        if svc is None:
            return None

        for m in svc.metrics():
            if m.label == metric:
                return m

        return None

    def pairs(self) -> "Iterator[tuple[Service, Metric]]":
        """
        yields every (service, metric) pair, services in registration
        order and metrics in the order the service lists them.
        """
        for svc in self.services():
            for m in svc.metrics():
                yield svc, m


class Catalog:
    """
    Catalog converts usage units into cost using the pricing of
    the metrics found in the registry.
    """

    def __init__(self, registry: "Registry") -> "None":
        self._registry = registry

    def compute_cost(
        self,
        service: "str",
        metric: "str",
        units: "float",
    ) -> "tuple[float, bool]":
        """
        returns (cost, True), or (0.0, False) when the metric is not
        registered or its pricing cannot produce a cost.
        """
        m = self._registry.find_metric(service, metric)
        if m is None:
            return 0.0, False

        # a zero divisor is a pricing gap, not an error
        if m.units_per_price == 0:
            return 0.0, False

        if not all(math.isfinite(v) for v in (units, m.units_per_price, m.price)):
            return 0.0, False

        cost = _to_decimal(units) / _to_decimal(m.units_per_price)
        return round_cents(cost * _to_decimal(m.price)), True
