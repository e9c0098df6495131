from __future__ import annotations

import asyncio
import signal
import time
from datetime import timedelta
from typing import Final

from loguru import logger

from name_screening.application.queue import JobQueue
from name_screening.infrastructure.config import QueueSettings


class QueueWorker:
    """큐를 주기적으로 구동하는 드라이버 루프

    매 틱마다 예약 Job을 대기열로 옮기고 drain을 백그라운드 태스크로 실행합니다.
    일정 간격으로 오래된 종료 Job을 정리합니다. drain이 끝날 때까지 기다리지 않으므로
    실행 중인 Job이 끝나는 즉시 빈 슬롯에 다음 Job이 들어갑니다.
    """

    def __init__(self, queue: JobQueue, settings: QueueSettings):
        self.queue: Final = queue
        self.settings: Final = settings
        self._stop = asyncio.Event()
        self._drains: set[asyncio.Task] = set()
        self._last_sweep = time.monotonic()

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
            except (NotImplementedError, RuntimeError):
                logger.debug(f"시그널 핸들러를 설치할 수 없습니다: {sig!r}")

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.info(
            f"시그널 {sig.name} 수신. 워커를 종료합니다", event_name="worker_signal"
        )
        self.stop()

    async def tick(self) -> None:
        await self.queue.promote_scheduled()
        task = asyncio.create_task(self.queue.drain())
        self._drains.add(task)
        task.add_done_callback(self._drains.discard)

        now = time.monotonic()
        if now - self._last_sweep >= self.settings.sweep_interval_seconds:
            self._last_sweep = now
            self.queue.sweep_completed(timedelta(seconds=self.settings.retention_seconds))

    def is_idle(self) -> bool:
        stats = self.queue.stats()
        # 완료된 drain은 다음 루프 반복에서야 집합에서 빠집니다.
        draining = any(not task.done() for task in self._drains)
        return not draining and stats.queued == 0 and stats.running == 0 and stats.scheduled == 0

    async def run(self, until_idle: bool = False) -> None:
        """stop()이 호출될 때까지 (until_idle이면 할 일이 없어질 때까지) 큐를 구동합니다."""
        logger.info(
            "큐 워커 시작",
            poll_interval=self.settings.poll_interval_seconds,
            until_idle=until_idle,
            event_name="worker_started",
        )
        try:
            while not self._stop.is_set():
                await self.tick()
                # drain 태스크가 Job을 시작할 기회를 줍니다.
                await asyncio.sleep(0)
                if until_idle and self.is_idle():
                    break
                try:
                    await asyncio.wait_for(
                        self._stop.wait(), timeout=self.settings.poll_interval_seconds
                    )
                except TimeoutError:
                    pass
        finally:
            if self._drains:
                logger.info(
                    f"실행 중인 drain {len(self._drains)}개 완료 대기",
                    event_name="worker_draining",
                )
                await asyncio.gather(*self._drains, return_exceptions=True)
            logger.info("큐 워커 종료", event_name="worker_stopped")
