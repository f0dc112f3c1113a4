"""
Сверка статуса оплаты после возврата в приложение.

Когда покупатель уходит во внешний checkout, приложение уходит в фон,
и deep-link возврата не всегда доносит итоговый статус. При каждом
возвращении на передний план клиент опрашивает Order API. Источник
истины остаётся на сервере (webhook), здесь только своевременное
обновление экрана.

Логика разделена на чистую функцию transition (состояние + событие ->
новое состояние) и драйвер PaymentReturnReconciler, который выполняет
побочные эффекты: запросы, паузы, хранение сессии и показ результата.
"""
import asyncio
import enum
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from storefront.client.api import OrderApiClient, OrderApiError
from storefront.client.session_store import FileSessionStore, PaymentSession

logger = logging.getLogger(__name__)

# Повторная проверка раньше этого интервала пропускается (кроме принудительной)
MIN_CHECK_INTERVAL = timedelta(seconds=3)
MAX_ATTEMPTS = 5
# Пауза после n-й неудачной попытки: n * BACKOFF_STEP секунд (1, 2, 3, 4)
BACKOFF_STEP = 1.0
# Сессия старше этого считается брошенной
SESSION_TTL = timedelta(minutes=30)


class ReconcilerState(str, enum.Enum):
    IDLE = "idle"  # нет сессии
    ACTIVE = "active"  # сессия есть, проверка не идёт
    CHECKING = "checking"  # проверка в процессе


class PaymentOutcome(str, enum.Enum):
    """Что видит пользователь в конце оплаты."""

    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"


OUTCOME_BY_STATUS = {
    "PAID": PaymentOutcome.SUCCESS,
    "FAILED": PaymentOutcome.FAILURE,
    "CANCELLED": PaymentOutcome.FAILURE,
    "REFUNDED": PaymentOutcome.FAILURE,
    "DISPUTED": PaymentOutcome.FAILURE,
}

OUTCOME_MESSAGES = {
    PaymentOutcome.SUCCESS: ("¡Pago Exitoso!", "Tu pago ha sido procesado correctamente."),
    PaymentOutcome.FAILURE: ("Error en el Pago", "Hubo un problema procesando tu pago. Intenta con otro método."),
    PaymentOutcome.PENDING: ("Pago Pendiente", "Tu pago está siendo procesado. Te notificaremos cuando se complete."),
}


@dataclass(frozen=True)
class Snapshot:
    state: ReconcilerState = ReconcilerState.IDLE
    order_id: int | None = None
    preference_id: str | None = None
    started_at: datetime | None = None
    last_checked_at: datetime | None = None


IDLE = Snapshot()


# События


@dataclass(frozen=True)
class Start:
    order_id: int
    preference_id: str | None = None


@dataclass(frozen=True)
class Foreground:
    forced: bool = False


@dataclass(frozen=True)
class Verified:
    """Order API вернул распознанный заказ."""

    order_id: int
    status: str


@dataclass(frozen=True)
class Exhausted:
    """Все попытки запроса к Order API неудачны."""

    order_id: int


Event = Start | Foreground | Verified | Exhausted


@dataclass(frozen=True)
class ReconcileResult:
    """Итог, который показывается пользователю."""

    outcome: PaymentOutcome
    order_id: int
    status: str | None = None

    @property
    def title(self) -> str:
        return OUTCOME_MESSAGES[self.outcome][0]

    @property
    def message(self) -> str:
        return OUTCOME_MESSAGES[self.outcome][1]


@dataclass(frozen=True)
class Transition:
    snapshot: Snapshot
    begin_check: bool = False
    # Если задан, сессия завершается: сначала удаляется, потом показывается результат
    result: ReconcileResult | None = None


def transition(snapshot: Snapshot, event: Event, now: datetime) -> Transition:
    """Чистый переход автомата. Ничего не запрашивает и не сохраняет."""
    if isinstance(event, Start):
        # Новая оплата заменяет прежнюю сессию
        return Transition(Snapshot(
            state=ReconcilerState.ACTIVE,
            order_id=event.order_id,
            preference_id=event.preference_id,
            started_at=now,
        ))

    if isinstance(event, Foreground):
        if snapshot.state != ReconcilerState.ACTIVE:
            return Transition(snapshot)
        if now - snapshot.started_at > SESSION_TTL:
            return Transition(IDLE, result=ReconcileResult(PaymentOutcome.PENDING, snapshot.order_id))
        if (
            not event.forced
            and snapshot.last_checked_at is not None
            and now - snapshot.last_checked_at < MIN_CHECK_INTERVAL
        ):
            return Transition(snapshot)
        checking = replace(snapshot, state=ReconcilerState.CHECKING, last_checked_at=now)
        return Transition(checking, begin_check=True)

    # Результаты проверки, пришедшие не к текущей сессии, игнорируются
    if snapshot.state != ReconcilerState.CHECKING or event.order_id != snapshot.order_id:
        return Transition(snapshot)

    if isinstance(event, Exhausted):
        return Transition(IDLE, result=ReconcileResult(PaymentOutcome.PENDING, event.order_id))

    outcome = OUTCOME_BY_STATUS.get(event.status)
    if outcome is None:
        # Ещё не финальный статус: ждём следующего возврата в приложение
        return Transition(replace(snapshot, state=ReconcilerState.ACTIVE))
    return Transition(IDLE, result=ReconcileResult(outcome, event.order_id, event.status))


class PaymentReturnReconciler:
    """
    Драйвер автомата сверки.

    Часы и пауза передаются снаружи, чтобы тесты не ждали реального времени.
    """

    def __init__(
        self,
        api: OrderApiClient,
        store: FileSessionStore,
        notify: Callable[[ReconcileResult], None],
        clock: Callable[[], datetime] = datetime.utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.api = api
        self.store = store
        self.notify = notify
        self.clock = clock
        self.sleep = sleep
        self.snapshot = self._restore()

    def _restore(self) -> Snapshot:
        session = self.store.load()
        if session is None:
            return IDLE
        # Проверка не переживает перезапуск, поэтому восстанавливаемся в ACTIVE
        return Snapshot(
            state=ReconcilerState.ACTIVE,
            order_id=session.order_id,
            preference_id=session.preference_id,
            started_at=session.started_at,
            last_checked_at=session.last_checked_at,
        )

    def _persist(self) -> None:
        snapshot = self.snapshot
        if snapshot.state == ReconcilerState.IDLE:
            self.store.clear()
            return
        self.store.save(PaymentSession(
            order_id=snapshot.order_id,
            preference_id=snapshot.preference_id,
            started_at=snapshot.started_at,
            last_checked_at=snapshot.last_checked_at,
        ))

    def _apply(self, step: Transition) -> ReconcileResult | None:
        self.snapshot = step.snapshot
        self._persist()
        if step.result is not None:
            # Сессия уже удалена: повторный foreground не покажет тот же результат
            logger.info(f"Оплата заказа {step.result.order_id}: {step.result.outcome.value}")
            self.notify(step.result)
        return step.result

    def start(self, order_id: int, preference_id: str | None = None) -> None:
        """Запомнить заказ перед переходом во внешний checkout."""
        self._apply(transition(self.snapshot, Start(order_id, preference_id), self.clock()))
        logger.info(f"Начата сессия оплаты заказа {order_id}")

    async def on_app_state_change(self, app_state: str) -> ReconcileResult | None:
        """Подписка на смену состояния приложения: проверяем только при возврате в active."""
        if app_state != "active":
            return None
        return await self.check()

    async def check(self, forced: bool = False) -> ReconcileResult | None:
        step = transition(self.snapshot, Foreground(forced=forced), self.clock())
        result = self._apply(step)
        if not step.begin_check:
            return result

        order_id = self.snapshot.order_id
        status = await self._fetch_status(order_id)
        event = Exhausted(order_id) if status is None else Verified(order_id, status)
        return self._apply(transition(self.snapshot, event, self.clock()))

    async def _fetch_status(self, order_id: int) -> str | None:
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                order = await self.api.get_order(order_id)
                return order.status
            except OrderApiError as e:
                logger.warning(f"Проверка заказа {order_id}, попытка {attempt}/{MAX_ATTEMPTS}: {e}")
            if attempt < MAX_ATTEMPTS:
                await self.sleep(attempt * BACKOFF_STEP)
        return None
