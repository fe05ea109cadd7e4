from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """
    指数退避：第 n 次失败后等待 base * 2**n（外加最多 25% 的抖动）。

    max_attempts 是总尝试次数（含第一次）。
    """

    max_attempts: int = 3
    base_delay_seconds: float = 0.5
    jitter_ratio: float = 0.25
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False, repr=False)

    def delay_for(self, attempt: int) -> float:
        backoff = self.base_delay_seconds * (2**attempt)
        jitter = random.random() * self.jitter_ratio * backoff
        return backoff + jitter

    def run(self, func: Callable[[], T], *, what: str) -> T:
        """
        执行 func，失败时退避重试；次数耗尽后抛出最后一次异常。
        """
        last_error: Exception | None = None
        for attempt in range(max(1, self.max_attempts)):
            try:
                return func()
            except Exception as e:  # noqa: BLE001
                last_error = e
                if attempt + 1 >= self.max_attempts:
                    break
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s failed, retrying: attempt=%d/%d delay=%.2fs error=%s: %s",
                    what,
                    attempt + 1,
                    self.max_attempts,
                    delay,
                    type(e).__name__,
                    e,
                )
                self.sleep(delay)

        assert last_error is not None
        raise last_error
