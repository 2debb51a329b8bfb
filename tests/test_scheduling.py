import logging
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from artisan_market.observability.metrics import get_counter_total
from artisan_market.services.scheduling import PromotionExpiryScheduler, RestorationScheduler

from conftest import FakeClock

NOW = datetime(2026, 3, 10, 6, 0, tzinfo=timezone.utc)


class FakeScheduler:
    """Stands in for APScheduler's BackgroundScheduler without a thread."""

    def __init__(self):
        self.jobs = []
        self.started = False
        self.shutdown_calls = []

    def add_job(self, func, trigger=None, **kwargs):
        self.jobs.append({"func": func, "trigger": trigger, **kwargs})

    def start(self):
        self.started = True

    def shutdown(self, wait=True):
        self.shutdown_calls.append(wait)

    def fire(self):
        for job in self.jobs:
            job["func"]()


class RecordingPersist:
    """Applies checks to copies of the snapshots; fails for chosen product ids."""

    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.calls = []

    def __call__(self, check):
        self.calls.append(check)
        if check.product_id in self.fail_for:
            raise RuntimeError(f"write failed for {check.product_id}")
        return SimpleNamespace(productID=check.product_id, **self.snapshots[check.product_id], **check.updates)

    def track(self, products):
        self.snapshots = {
            p.productID: {k: v for k, v in vars(p).items() if k != "productID"} for p in products
        }
        for product_id, values in self.snapshots.items():
            for key in ("remaining_capacity", "last_capacity_restore", "available_quantity", "next_available_date"):
                values.pop(key, None)
        return products


def due_capacity_product(product_id, **overrides):
    values = dict(
        productID=product_id,
        name=f"Commission {product_id}",
        fulfillment_type="made_to_order",
        total_capacity=5,
        remaining_capacity=0,
        capacity_period="daily",
        last_capacity_restore=NOW - timedelta(days=1),
        created_at=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def build_scheduler(persist, clock=None):
    fake = FakeScheduler()
    scheduler = RestorationScheduler(
        persist=persist,
        interval_seconds=60,
        clock=clock or FakeClock(NOW),
        scheduler_factory=lambda: fake,
    )
    return scheduler, fake


def test_start_runs_immediate_check_then_schedules_interval_job():
    persist = RecordingPersist()
    products = persist.track([due_capacity_product(1)])
    scheduler, fake = build_scheduler(persist)
    updates = []

    assert scheduler.start(products, on_update=updates.append) is True

    assert len(persist.calls) == 1
    assert [p.productID for p in updates[0]] == [1]
    assert fake.started
    assert fake.jobs[0]["id"] == "inventory_restoration"
    assert fake.jobs[0]["trigger"].interval == timedelta(seconds=60)
    assert scheduler.status()["running"] is True


def test_second_start_is_a_logged_no_op(caplog):
    persist = RecordingPersist()
    products = persist.track([due_capacity_product(1)])
    scheduler, fake = build_scheduler(persist)
    scheduler.start(products)

    with caplog.at_level(logging.WARNING):
        assert scheduler.start(products) is False

    assert "already running" in caplog.text
    assert len(fake.jobs) == 1
    assert len(persist.calls) == 1


def test_stop_is_safe_when_not_running():
    scheduler, fake = build_scheduler(RecordingPersist())
    scheduler.stop()
    assert fake.shutdown_calls == []


def test_stop_shuts_down_without_waiting():
    persist = RecordingPersist()
    scheduler, fake = build_scheduler(persist)
    scheduler.start(persist.track([]))
    scheduler.stop()
    assert fake.shutdown_calls == [False]
    assert scheduler.is_running is False


def test_failure_for_one_product_does_not_block_others():
    persist = RecordingPersist(fail_for={2})
    products = persist.track([due_capacity_product(1), due_capacity_product(2), due_capacity_product(3)])
    scheduler, _ = build_scheduler(persist)
    updates = []

    result = scheduler.manual_check(None, products, on_update=updates.append)

    assert [p.productID for p in updates[0]] == [1, 3]
    assert [failure["productId"] for failure in result.failed] == [2]
    assert get_counter_total("inventory_restoration_failures_total") == 1
    assert get_counter_total("inventory_restorations_total") == 2


def test_duplicate_snapshots_are_persisted_once():
    persist = RecordingPersist()
    product = due_capacity_product(1)
    persist.track([product])
    scheduler, _ = build_scheduler(persist)

    result = scheduler.manual_check(None, [product, product])

    assert len(persist.calls) == 1
    assert result.checked == 1


def test_persisted_snapshots_replace_monitored_ones():
    persist = RecordingPersist()
    products = persist.track([due_capacity_product(1), due_capacity_product(2, last_capacity_restore=NOW)])
    scheduler, fake = build_scheduler(persist)
    scheduler.start(products)

    monitored = {p.productID: p for p in scheduler.monitored_products}
    assert monitored[1].remaining_capacity == 5
    assert monitored[1].last_capacity_restore == NOW

    fake.fire()
    assert len(persist.calls) == 1


def test_provider_is_called_every_tick():
    persist = RecordingPersist()
    calls = []

    def provider():
        calls.append(1)
        return persist.track([due_capacity_product(1)])

    scheduler, fake = build_scheduler(persist)
    scheduler.start(provider)
    fake.fire()

    assert len(calls) == 2
    assert len(persist.calls) == 2


def test_manual_check_filters_by_product_id():
    persist = RecordingPersist()
    products = persist.track([due_capacity_product(1), due_capacity_product(2)])
    scheduler, _ = build_scheduler(persist)

    result = scheduler.manual_check([2], products)

    assert [check.product_id for check in persist.calls] == [2]
    assert result.to_dict()["updated"] == [2]


def test_callback_failure_is_contained():
    persist = RecordingPersist()
    products = persist.track([due_capacity_product(1)])
    scheduler, _ = build_scheduler(persist)

    def broken(_):
        raise ValueError("listener exploded")

    result = scheduler.manual_check(None, products, on_update=broken)
    assert len(result.updated) == 1


def test_restoration_status_reports_pending_products():
    persist = RecordingPersist()
    products = [
        due_capacity_product(1),
        due_capacity_product(2, last_capacity_restore=NOW),
        SimpleNamespace(productID=3, name="Mug", fulfillment_type="ready_to_ship", stock=4),
    ]
    scheduler, _ = build_scheduler(persist)

    status = scheduler.get_restoration_status(products)

    assert status["isRunning"] is False
    assert status["totalProducts"] == 3
    assert status["byFulfillmentType"] == {"ready_to_ship": 1, "made_to_order": 2, "scheduled_order": 0}
    assert status["needsRestoration"] == [
        {"productId": 1, "productName": "Commission 1", "restorationTypes": ["capacity_restoration"]}
    ]


class StubExpiryService:
    def __init__(self, session, seen):
        self.session = session
        self.seen = seen

    def expire_due(self, now):
        self.seen.append(now)
        return SimpleNamespace(to_dict=lambda: {"expired": [4], "failed": [], "flags_cleared": []})


class StubSession:
    closed = False

    def close(self):
        self.closed = True


def test_expiry_scheduler_uses_fresh_session_per_tick():
    sessions, seen = [], []

    def session_factory():
        sessions.append(StubSession())
        return sessions[-1]

    fake = FakeScheduler()
    scheduler = PromotionExpiryScheduler(
        session_factory=session_factory,
        interval_seconds=300,
        clock=FakeClock(NOW),
        scheduler_factory=lambda: fake,
        service_factory=lambda session: StubExpiryService(session, seen),
    )

    scheduler.start()
    fake.fire()

    assert seen == [NOW, NOW]
    assert len(sessions) == 2
    assert all(session.closed for session in sessions)
    assert scheduler.status()["last_result"]["expired"] == [4]


def test_failed_tick_is_counted_and_swallowed():
    def session_factory():
        raise RuntimeError("database unavailable")

    fake = FakeScheduler()
    scheduler = PromotionExpiryScheduler(
        session_factory=session_factory,
        clock=FakeClock(NOW),
        scheduler_factory=lambda: fake,
    )

    assert scheduler.start() is True
    assert get_counter_total("scheduler_tick_failures_total") == 1
    assert scheduler.last_run_at == NOW


def test_snapshots_without_ids_are_each_restored():
    calls = []

    def persist(check):
        calls.append(check)

    scheduler, _ = build_scheduler(persist)

    result = scheduler.manual_check(None, [due_capacity_product(None), due_capacity_product(None)])

    assert len(calls) == 2
    assert result.checked == 2
    assert len(result.updated) == 2
