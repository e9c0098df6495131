from __future__ import annotations

from collections import defaultdict
from typing import Awaitable, Callable, override

from loguru import logger

from name_screening.domain.events import Event
from name_screening.domain.message_bus import Handler, MessageBus


class FunctionHandler(Handler):
    """함수를 핸들러 프로토콜에 맞게 감싸는 어댑터"""

    def __init__(self, handler_func: Callable[[Event], Awaitable[None]]):
        self._handler_func = handler_func

    @override
    async def handle(self, message: Event) -> None:
        await self._handler_func(message)


class InMemoryMessageBus(MessageBus):
    """인메모리 메시지 버스 구현체"""

    def __init__(self):
        self._event_handlers: defaultdict[type[Event], list[Handler]] = defaultdict(
            list
        )

    @override
    def subscribe_to_event(self, event: type[Event], handler: Handler) -> None:
        self._event_handlers[event].append(handler)

    @override
    async def handle(self, message: Event) -> None:
        if not isinstance(message, Event):
            raise TypeError(f"Message must be an Event, not {type(message).__name__}")
        for handler in self._event_handlers[type(message)]:
            try:
                await handler.handle(message)
            except Exception:
                # 구독자 오류가 Job 상태 전이를 되돌리지 않도록 격리합니다.
                logger.exception(
                    f"Event handler {type(handler).__name__} failed for {type(message).__name__}"
                )
