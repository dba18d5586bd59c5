"""
告警 Sink

支持:
- 有界指数退避重试
- 重试耗尽后写入本地日志（每条告警恰好一次）
- 多线程并发调用
"""

import json
import logging
import sys
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, List, Optional, TextIO, Union

from ..models.exceptions import SinkDeliveryError
from ..models.result import Alert

logger = logging.getLogger(__name__)

# 投递失败的告警单独写入该 logger，运维可以把它接到本地文件
undelivered_logger = logging.getLogger("health_probe.undelivered")


class AlertSink(ABC):
    """告警 Sink 接口: emit(alert) -> 是否投递成功，必须可并发调用"""

    @abstractmethod
    def emit(self, alert: Alert) -> bool:
        """投递告警"""

    def close(self) -> None:
        """释放资源"""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class RetryingSink(AlertSink):
    """
    带重试的 Sink 基类

    子类只需实现 send(alert)，失败时抛出 SinkDeliveryError。
    第 n 次失败后等待 min(max_delay, base_delay * backoff ** (n - 1)) 秒
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        backoff: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            max_attempts: 最大尝试次数（含首次）
            base_delay: 首次重试前的等待（秒）
            max_delay: 单次等待上限（秒）
            backoff: 退避倍数
            sleep: 等待函数（测试时可注入）
        """
        if max_attempts < 1:
            raise ValueError("max_attempts 必须大于等于 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff = backoff
        self._sleep = sleep
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    def send(self, alert: Alert) -> None:
        """
        发送一次

        Raises:
            SinkDeliveryError: 发送失败
        """

    def delay_for(self, attempt: int) -> float:
        """第 attempt 次失败后的等待时间"""
        return min(self.max_delay, self.base_delay * (self.backoff ** (attempt - 1)))

    def emit(self, alert: Alert) -> bool:
        last_error: Optional[SinkDeliveryError] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                self.send(alert)
                if attempt > 1:
                    logger.info(f"[Health-Probe] {self.name} 第 {attempt} 次尝试投递成功: {alert.probe_name}")
                return True
            except SinkDeliveryError as e:
                last_error = e
            except Exception as e:
                last_error = SinkDeliveryError(f"未知错误: {e}", original_error=e)

            if attempt < self.max_attempts:
                delay = self.delay_for(attempt)
                logger.warning(
                    f"[Health-Probe] {self.name} 投递失败，{delay:g}s 后重试 "
                    f"({attempt}/{self.max_attempts}): {last_error}"
                )
                self._sleep(delay)

        self._record_undelivered(alert, last_error)
        return False

    def _record_undelivered(self, alert: Alert, error: Optional[Exception]) -> None:
        undelivered_logger.error(
            f"[Health-Probe] {self.name} 告警投递失败（已尝试 {self.max_attempts} 次）: {error} | "
            f"{json.dumps(alert.to_dict(), ensure_ascii=False)}"
        )


class ConsoleSink(RetryingSink):
    """输出到控制台（默认 stdout）"""

    def __init__(self, stream: Optional[TextIO] = None, **kwargs):
        super().__init__(**kwargs)
        self.stream = stream

    def send(self, alert: Alert) -> None:
        line = f"{alert.formatted_timestamp} {alert.title} [{alert.kind}] {alert.message}"
        with self._lock:
            try:
                print(line, file=self.stream or sys.stdout, flush=True)
            except (OSError, ValueError) as e:
                raise SinkDeliveryError(f"写入控制台失败: {e}", original_error=e) from e


class FileSink(RetryingSink):
    """以 JSON Lines 格式追加写入文件"""

    def __init__(self, path: Union[str, Path], **kwargs):
        super().__init__(**kwargs)
        self.path = Path(path)

    def send(self, alert: Alert) -> None:
        line = json.dumps(alert.to_dict(), ensure_ascii=False)
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
            except OSError as e:
                raise SinkDeliveryError(f"写入文件 {self.path} 失败: {e}", original_error=e) from e

    def __repr__(self) -> str:
        return f"FileSink('{self.path}')"


class MultiSink(AlertSink):
    """
    扇出到多个 Sink

    每个子 Sink 独立重试；全部成功才算投递成功
    """

    def __init__(self, sinks: Optional[List[AlertSink]] = None):
        self.sinks = list(sinks or [])

    def add(self, sink: AlertSink) -> "MultiSink":
        self.sinks.append(sink)
        return self

    def emit(self, alert: Alert) -> bool:
        results = [sink.emit(alert) for sink in self.sinks]
        return all(results)

    def close(self) -> None:
        for sink in self.sinks:
            sink.close()

    def __len__(self) -> int:
        return len(self.sinks)
