"""
Background jobs owned by the composition root.

Each scheduler is an explicit instance wrapping its own APScheduler
``BackgroundScheduler``; nothing here lives at module level, so tests can
build, tick and stop schedulers with a fake clock and no shared state.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from artisan_market.config import Config
from artisan_market.models import FulfillmentType
from artisan_market.observability import increment_counter, record_event, set_gauge
from artisan_market.services.inventory_model import InventoryModel, RestorationCheck

Clock = Callable[[], datetime]
ProductSource = Union[Sequence[Any], Callable[[], Iterable[Any]]]
UpdateCallback = Callable[[List[Any]], None]


def utc_clock() -> datetime:
    return datetime.now(timezone.utc)


def _default_scheduler() -> BackgroundScheduler:
    return BackgroundScheduler(timezone="UTC")


class PeriodicJob:
    """Runs ``_tick`` once on start and then every ``interval_seconds``."""

    job_id = "periodic_job"

    def __init__(
        self,
        interval_seconds: int,
        clock: Clock = utc_clock,
        scheduler_factory: Callable[[], Any] = _default_scheduler,
    ) -> None:
        self.interval_seconds = interval_seconds
        self.clock = clock
        self.scheduler_factory = scheduler_factory
        self.logger = logging.getLogger(f"{__name__}.{type(self).__name__}")
        self._scheduler: Optional[Any] = None
        self.last_run_at: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def _start_job(self) -> bool:
        if self.is_running:
            self.logger.warning("%s is already running; ignoring start request", self.job_id)
            return False

        self._run_tick()
        scheduler = self.scheduler_factory()
        scheduler.add_job(
            self._run_tick,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=self.job_id,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        self.logger.info("%s started (interval=%ss)", self.job_id, self.interval_seconds)
        return True

    def stop(self) -> None:
        if self._scheduler is None:
            return
        scheduler, self._scheduler = self._scheduler, None
        scheduler.shutdown(wait=False)
        self.logger.info("%s stopped", self.job_id)

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "interval_seconds": self.interval_seconds,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
        }

    def _run_tick(self) -> None:
        self.last_run_at = self.clock()
        try:
            self._tick()
        except Exception:
            # A failing tick must not kill the interval job
            increment_counter("scheduler_tick_failures_total", labels={"job": self.job_id})
            self.logger.exception("%s tick failed", self.job_id)

    def _tick(self) -> None:
        raise NotImplementedError


@dataclass
class RestorationResult:
    checked: int = 0
    updated: List[Any] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)
    checks: List[RestorationCheck] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checked": self.checked,
            "updated": [getattr(product, "productID", None) for product in self.updated],
            "failed": list(self.failed),
            "checks": [check.to_dict() for check in self.checks],
        }


class RestorationScheduler(PeriodicJob):
    """
    Periodically refills made-to-order capacity and scheduled-order stock.

    ``persist`` receives one ``RestorationCheck`` and returns the updated
    product snapshot. A failure for one product is logged and counted; the
    rest of the tick carries on and ``on_update`` receives only the products
    that were actually persisted.
    """

    job_id = "inventory_restoration"

    def __init__(
        self,
        persist: Callable[[RestorationCheck], Any],
        interval_seconds: int = Config.RESTORATION_CHECK_INTERVAL_SECONDS,
        clock: Clock = utc_clock,
        scheduler_factory: Callable[[], Any] = _default_scheduler,
    ) -> None:
        super().__init__(interval_seconds, clock=clock, scheduler_factory=scheduler_factory)
        self.persist = persist
        self._products: ProductSource = []
        self._on_update: Optional[UpdateCallback] = None
        self.last_result: Optional[RestorationResult] = None

    def start(self, products: ProductSource, on_update: Optional[UpdateCallback] = None) -> bool:
        if self.is_running:
            self.logger.warning("Inventory restoration service is already running")
            return False
        self._products = products if callable(products) else list(products)
        self._on_update = on_update
        return self._start_job()

    @property
    def monitored_products(self) -> List[Any]:
        if callable(self._products):
            return list(self._products())
        return list(self._products)

    def run_check(self) -> RestorationResult:
        result = self._restore(self.monitored_products, self._on_update)
        if not callable(self._products) and result.updated:
            self._swap_snapshots(result.updated)
        self.last_result = result
        return result

    def manual_check(
        self,
        product_ids: Optional[Iterable[int]],
        all_products: Iterable[Any],
        on_update: Optional[UpdateCallback] = None,
    ) -> RestorationResult:
        """Restore the given products now, regardless of the timer."""
        products = list(all_products)
        if product_ids is not None:
            wanted = set(product_ids)
            products = [product for product in products if getattr(product, "productID", None) in wanted]
        self.logger.info("Manual restoration check for %d products", len(products))
        return self._restore(products, on_update)

    def get_restoration_status(
        self,
        products: Optional[Iterable[Any]] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        products = self.monitored_products if products is None else list(products)
        now = now or self.clock()
        by_type = {fulfillment_type.value: 0 for fulfillment_type in FulfillmentType}
        pending: List[Dict[str, Any]] = []

        for product in products:
            model = InventoryModel(product)
            if model.fulfillment_type is not None:
                by_type[model.fulfillment_type.value] += 1
            checks = model.check_inventory_restoration(now)
            if checks:
                pending.append(
                    {
                        "productId": model.product_id,
                        "productName": getattr(product, "name", None),
                        "restorationTypes": [check.type for check in checks],
                    }
                )

        return {
            "isRunning": self.is_running,
            "totalProducts": len(products),
            "byFulfillmentType": by_type,
            "needsRestoration": pending,
            "checkedAt": now.isoformat(),
        }

    def status(self) -> Dict[str, Any]:
        payload = super().status()
        if self.last_result is not None:
            payload["last_result"] = {
                "checked": self.last_result.checked,
                "updated": len(self.last_result.updated),
                "failed": len(self.last_result.failed),
            }
        return payload

    def _tick(self) -> None:
        self.run_check()

    def _restore(self, products: Iterable[Any], on_update: Optional[UpdateCallback]) -> RestorationResult:
        now = self.clock()
        result = RestorationResult()
        seen = set()

        for product in products:
            product_id = getattr(product, "productID", None)
            if product_id is not None:
                if product_id in seen:
                    continue
                seen.add(product_id)
            result.checked += 1

            for check in InventoryModel(product).check_inventory_restoration(now):
                result.checks.append(check)
                try:
                    persisted = self.persist(check)
                except Exception as exc:
                    increment_counter("inventory_restoration_failures_total", labels={"type": check.type})
                    self.logger.exception("Restoration failed for product %s", product_id)
                    result.failed.append({"productId": product_id, "type": check.type, "error": str(exc)})
                    continue
                result.updated.append(persisted if persisted is not None else product)
                increment_counter("inventory_restorations_total", labels={"type": check.type})

        set_gauge("inventory_restoration_last_updated", len(result.updated))
        if result.updated:
            record_event(
                "inventory_restored",
                {"product_ids": [getattr(p, "productID", None) for p in result.updated], "at": now.isoformat()},
            )
            if on_update is not None:
                try:
                    on_update(list(result.updated))
                except Exception:
                    self.logger.exception("Restoration update callback failed")

        if result.failed:
            self.logger.warning(
                "Restoration tick finished with %d failures",
                len(result.failed),
                extra={"failed": result.failed},
            )
        return result

    def _swap_snapshots(self, updated: List[Any]) -> None:
        fresh = {
            getattr(product, "productID", None): product
            for product in updated
            if getattr(product, "productID", None) is not None
        }
        self._products = [fresh.get(getattr(product, "productID", None), product) for product in self._products]


class PromotionExpiryScheduler(PeriodicJob):
    """Runs ``expire_due`` on a fresh session every tick."""

    job_id = "promotion_expiry"

    def __init__(
        self,
        session_factory: Callable[[], Any],
        interval_seconds: int = Config.PROMOTION_EXPIRY_INTERVAL_SECONDS,
        clock: Clock = utc_clock,
        scheduler_factory: Callable[[], Any] = _default_scheduler,
        service_factory: Optional[Callable[[Any], Any]] = None,
    ) -> None:
        super().__init__(interval_seconds, clock=clock, scheduler_factory=scheduler_factory)
        self.session_factory = session_factory
        self.service_factory = service_factory
        self.last_result: Optional[Any] = None

    def start(self) -> bool:
        return self._start_job()

    def _build_service(self, session: Any) -> Any:
        if self.service_factory is not None:
            return self.service_factory(session)
        from artisan_market.services.promotional_feature_service import PromotionalFeatureService

        return PromotionalFeatureService(session)

    def run_once(self) -> Any:
        session = self.session_factory()
        try:
            self.last_result = self._build_service(session).expire_due(self.clock())
            return self.last_result
        finally:
            session.close()

    def status(self) -> Dict[str, Any]:
        payload = super().status()
        if self.last_result is not None:
            payload["last_result"] = self.last_result.to_dict()
        return payload

    def _tick(self) -> None:
        self.run_once()
