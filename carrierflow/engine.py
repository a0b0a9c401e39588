"""
Wires the flows, stores and locks from settings.

STORE_BACKEND=memory keeps everything in-process (single worker).
STORE_BACKEND=redis shares in-flight state and locks across workers.
"""
import threading
from typing import Optional

from carrierflow.core.checkout_flow import CheckoutFlow
from carrierflow.core.flow_manager import FlowManager
from carrierflow.core.flow_references import FlowReferenceRegistry
from carrierflow.core.notifier import Notifier
from carrierflow.core.pin_flow import PinFlow
from carrierflow.core.ports import GatewayMessagingSender, PersistenceSink
from carrierflow.core.reconciler import WebhookReconciler
from carrierflow.core.subscriptions import SubscriptionManager
from carrierflow.core.sweeper import Sweeper
from carrierflow.settings import settings
from carrierflow.store.ttl_store import build_store
from carrierflow.upstream.gateway import UpstreamGateway
from carrierflow.utils.lock import KeyedLocks, RedisKeyedLocks
from carrierflow.utils.time import SystemClock


def build_gateway() -> UpstreamGateway:
    return UpstreamGateway(
        environment=settings.ENVIRONMENT,
        username=settings.API_USERNAME,
        password=settings.API_PASSWORD,
        timeout_sec=settings.UPSTREAM_TIMEOUT_SEC,
    )


class Engine:
    def __init__(self, gateway=None, clock=None, backend: Optional[str] = None, redis=None, sink=None,
                 notify_mode: Optional[str] = None):
        self.clock = clock or SystemClock()
        self.gateway = gateway or build_gateway()
        self.sink = sink or PersistenceSink()
        backend = (backend or settings.STORE_BACKEND).lower()

        if backend == "redis" and redis is None:
            from carrierflow.store.redis_conn import get_redis
            redis = get_redis()

        def store(name):
            return build_store(name, backend, clock=self.clock, redis=redis, prefix=settings.STORE_KEY_PREFIX)

        if backend == "redis":
            self.locks = RedisKeyedLocks(redis, settings.LOCK_TTL_MS, settings.LOCK_WAIT_SEC,
                                         prefix=settings.STORE_KEY_PREFIX)
        else:
            self.locks = KeyedLocks(settings.LOCK_WAIT_SEC)

        self.codes = store("codes")
        self.sessions = store("sessions")
        self.anonymous_refs = store("anonymous_refs")
        self.references = FlowReferenceRegistry(store("references"), self.clock)

        mode = (notify_mode or settings.NOTIFY_MODE).lower()
        queue_factory = None
        if mode == "rq":
            from carrierflow.queue.rq_conn import get_queue
            queue_factory = get_queue
        self.notifier = Notifier(
            sender=GatewayMessagingSender(self.gateway),
            mode=mode,
            queue_factory=queue_factory,
            default_language=settings.DEFAULT_LANGUAGE,
        )

        self.pin_flow = PinFlow(self.gateway, self.codes, self.locks, self.clock,
                                sink=self.sink, notifier=self.notifier)
        self.checkout_flow = CheckoutFlow(
            self.gateway, self.sessions, self.references, self.anonymous_refs, self.locks, self.clock,
            sink=self.sink, notifier=self.notifier,
            anonymous_retention_sec=settings.ANONYMOUS_REFERENCE_RETENTION_DAYS * 86400,
        )
        self.manager = FlowManager(self.pin_flow, self.checkout_flow, self.references, self.anonymous_refs)
        self.reconciler = WebhookReconciler(
            self.references, store("webhook_fingerprints"), self.locks, self.clock,
            sink=self.sink, history_size=settings.WEBHOOK_HISTORY_SIZE, environment=self.gateway.environment,
        )
        self.subscriptions = SubscriptionManager(self.gateway, self.anonymous_refs, self.pin_flow,
                                                 self.clock, sink=self.sink)
        self.sweeper = Sweeper(self.manager, self.reconciler, settings.SWEEP_INTERVAL_SEC)


_engine: Optional[Engine] = None
_engine_lock = threading.Lock()


def get_engine() -> Engine:
    global _engine
    with _engine_lock:
        if _engine is None:
            _engine = Engine()
        return _engine


def reset_engine(engine: Optional[Engine] = None) -> None:
    """Replace (or drop) the process-wide engine. Used by tests."""
    global _engine
    with _engine_lock:
        if _engine is not None and engine is not _engine:
            _engine.sweeper.stop()
        _engine = engine
