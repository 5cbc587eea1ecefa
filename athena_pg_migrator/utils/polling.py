import threading
import time
from typing import Any, Callable, Optional

from athena_pg_migrator.errors import PollCancelledError, PollTimeoutError


class Poller:
    """
    周期性轮询，直到满足完成条件
    :param interval: 首次轮询间隔（秒）
    :param timeout: 最大等待时间（秒），None表示不限
    :param backoff: 间隔增长系数，1.0为固定间隔
    :param max_interval: 间隔上限（秒）
    :param cancel_event: 置位后立即终止等待
    """

    def __init__(self,
            interval: float = 5,
            timeout: Optional[float] = None,
            backoff: float = 1.0,
            max_interval: Optional[float] = None,
            cancel_event: Optional[threading.Event] = None
    ):
        if interval < 0:
            raise ValueError(f"轮询间隔不能为负数：{interval}")
        if backoff < 1.0:
            raise ValueError(f"退避系数不能小于1：{backoff}")
        self.interval = interval
        self.timeout = timeout
        self.backoff = backoff
        self.max_interval = max_interval
        self.cancel_event = cancel_event or threading.Event()

    def cancel(self):
        self.cancel_event.set()

    def poll(self,
            fetch: Callable[[], Any],
            is_done: Callable[[Any], bool],
            description: str = "",
            on_tick: Optional[Callable[[int, Any], None]] = None
    ) -> Any:
        """
        反复调用fetch直到is_done返回True
        :return: 最后一次fetch的结果
        """
        start_time = time.monotonic()
        delay = self.interval
        attempt = 0

        while True:
            if self.cancel_event.is_set():
                raise PollCancelledError(f"等待{description}被取消")

            attempt += 1
            value = fetch()
            if on_tick:
                on_tick(attempt, value)
            if is_done(value):
                return value

            elapsed = time.monotonic() - start_time
            wait_time = delay
            if self.timeout is not None:
                if elapsed >= self.timeout:
                    raise PollTimeoutError(
                        f"等待{description}超时：已轮询{attempt}次，耗时{round(elapsed, 2)}秒（上限{self.timeout}秒）"
                    )
                wait_time = min(delay, self.timeout - elapsed)

            # 非忙等：Event.wait在取消时提前返回
            if self.cancel_event.wait(wait_time):
                raise PollCancelledError(f"等待{description}被取消")

            delay = delay * self.backoff
            if self.max_interval is not None:
                delay = min(delay, self.max_interval)
