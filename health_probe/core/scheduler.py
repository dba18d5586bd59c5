"""
调度器

单线程调度循环 + 线程池执行:
- 调度决策只在循环线程里做，保证可复现
- 每个探针按自己的间隔调度，首轮立即到期
- 执行在线程池中进行，慢探针不会拖慢其他探针
- 同一探针同一时刻最多一个执行（非阻塞互斥），重叠的调度直接跳过并记录日志，不排队
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from ..models.probe import Probe
from ..models.exceptions import ProbeExecutionError
from ..models.result import AlertKind, ProbeResult, ProbeState, RunSummary
from .evaluator import ResultEvaluator
from .registry import ProbeRegistry

logger = logging.getLogger(__name__)


@dataclass
class ProbeSlot:
    """
    单个探针的调度状态

    Attributes:
        probe: 探针
        next_due: 下次到期时间（调度时钟）
        state: 当前状态（IDLE / RUNNING）
        last_result: 最近一次执行结果
        runs: 已派发次数
        skipped: 因上一轮未结束而跳过的次数
    """
    probe: Probe
    next_due: float
    state: ProbeState = ProbeState.IDLE
    last_result: Optional[ProbeResult] = None
    runs: int = 0
    skipped: int = 0
    guard: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def last_state(self) -> Optional[ProbeState]:
        return self.last_result.state if self.last_result else None


class Scheduler:
    """
    探针调度器

    Usage:
        scheduler = Scheduler(registry, evaluator, sink, max_workers=4)
        stop = threading.Event()
        scheduler.run(stop)        # 阻塞直到 stop.set()
        scheduler.shutdown()
    """

    # 没有任何探针时的空转等待（秒）
    IDLE_WAIT = 1.0

    def __init__(
        self,
        registry: ProbeRegistry,
        evaluator: ResultEvaluator,
        sink,
        max_workers: int = 4,
        clock: Callable[[], float] = time.monotonic,
        on_result: Optional[Callable[[ProbeResult], None]] = None,
    ):
        """
        Args:
            registry: 探针注册表
            evaluator: 结果评估器
            sink: 告警 Sink（需提供 emit(alert) -> bool）
            max_workers: 执行线程数
            clock: 调度时钟（测试时可注入）
            on_result: 每轮执行完成后的回调
        """
        self.registry = registry
        self.evaluator = evaluator
        self.sink = sink
        self.clock = clock
        self.on_result = on_result
        self.max_workers = max_workers

        self._slots: Dict[str, ProbeSlot] = {}
        # 守护锁按名称保存，注销后重新注册的同名探针仍与旧的执行互斥
        self._guards: Dict[str, threading.Lock] = {}
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="health-probe")
        self._stop = threading.Event()

    # ==================== 调度 ====================

    def _sync_slots(self, now: float) -> List[ProbeSlot]:
        """与注册表同步: 新探针立即到期，已注销的探针移除（仍在执行的保留守护锁）"""
        slots = []
        names = set()
        for probe in self.registry.list():
            names.add(probe.name)
            slot = self._slots.get(probe.name)
            if slot is None or slot.probe is not probe:
                guard = self._guards.setdefault(probe.name, threading.Lock())
                slot = ProbeSlot(probe=probe, next_due=now, guard=guard)
                self._slots[probe.name] = slot
            slots.append(slot)

        for name in list(self._slots):
            if name not in names:
                del self._slots[name]
        for name, guard in list(self._guards.items()):
            if name not in names and not guard.locked():
                del self._guards[name]
        return slots

    def tick(self, now: Optional[float] = None) -> List[str]:
        """
        执行一次调度决策

        Args:
            now: 当前调度时钟，默认取 clock()

        Returns:
            本次派发的探针名称列表（按注册顺序）
        """
        now = self.clock() if now is None else now
        dispatched = []

        for slot in self._sync_slots(now):
            if slot.next_due > now:
                continue

            # 错过的周期不补跑
            slot.next_due += slot.probe.interval_seconds
            if slot.next_due <= now:
                slot.next_due = now + slot.probe.interval_seconds

            if self._dispatch(slot) is not None:
                dispatched.append(slot.probe.name)

        return dispatched

    def _dispatch(self, slot: ProbeSlot) -> Optional[Future]:
        if not slot.guard.acquire(blocking=False):
            slot.skipped += 1
            logger.warning(
                f"[Health-Probe] {slot.probe.name} 上一轮仍在执行，跳过本次调度（累计跳过 {slot.skipped} 次）"
            )
            return None

        slot.state = ProbeState.RUNNING
        slot.runs += 1
        try:
            return self._pool.submit(self._execute, slot)
        except RuntimeError:
            # 线程池已关闭
            slot.state = ProbeState.IDLE
            slot.guard.release()
            raise

    def _execute(self, slot: ProbeSlot) -> Tuple[ProbeResult, Optional[bool]]:
        """
        在线程池中执行单个探针

        Returns:
            (result, delivered) 元组，没有告警时 delivered 为 None
        """
        probe = slot.probe
        delivered = None
        try:
            try:
                result = self.evaluator.evaluate(probe)
            except Exception as e:
                # 评估器之外的缺陷同样按执行失败上报
                logger.exception(f"[Health-Probe] {probe.name} 执行出现未预期异常")
                error = ProbeExecutionError(
                    f"未预期异常: {type(e).__name__}: {e}", sql=probe.query, original_error=e,
                )
                result = self.evaluator.failed(probe, error, AlertKind.EXECUTION_ERROR)
            slot.last_result = result

            if result.alert is not None:
                try:
                    delivered = self.sink.emit(result.alert)
                except Exception:
                    logger.exception(f"[Health-Probe] {probe.name} 告警投递异常")
                    delivered = False
        finally:
            slot.state = ProbeState.IDLE
            slot.guard.release()

        if self.on_result is not None:
            try:
                self.on_result(result)
            except Exception:
                logger.exception(f"[Health-Probe] {probe.name} 结果回调异常")
        return result, delivered

    def seconds_until_next(self, now: Optional[float] = None) -> Optional[float]:
        """距离下一个探针到期的秒数，没有探针时返回 None"""
        now = self.clock() if now is None else now
        slots = self._sync_slots(now)
        if not slots:
            return None
        return max(0.0, min(s.next_due for s in slots) - now)

    # ==================== 运行 ====================

    def run(self, stop_event: Optional[threading.Event] = None) -> None:
        """
        运行调度循环，直到 stop_event 被设置

        循环只在等待下一个到期探针时挂起；探针失败不会让循环退出
        """
        stop = stop_event or self._stop
        logger.info(
            f"[Health-Probe] 调度器启动，{len(self.registry)} 个探针，{self.max_workers} 个执行线程"
        )

        while not stop.is_set():
            self.tick()
            delay = self.seconds_until_next()
            stop.wait(self.IDLE_WAIT if delay is None else delay)

        logger.info("[Health-Probe] 调度器已停止")

    def run_all(self) -> RunSummary:
        """
        立即执行所有探针一次并等待完成（run-once）

        Returns:
            RunSummary，结果按注册顺序排列
        """
        pending = []
        for slot in self._sync_slots(self.clock()):
            future = self._dispatch(slot)
            if future is not None:
                pending.append(future)

        summary = RunSummary()
        for future in pending:
            result, delivered = future.result()
            summary.results.append(result)
            if delivered is True:
                summary.delivered += 1
            elif delivered is False:
                summary.undelivered += 1
        return summary

    def stop(self) -> None:
        self._stop.set()

    def shutdown(self, wait: bool = True) -> None:
        """停止调度并等待正在执行的探针结束"""
        self._stop.set()
        self._pool.shutdown(wait=wait)

    # ==================== 状态 ====================

    def slot(self, name: str) -> Optional[ProbeSlot]:
        return self._slots.get(name)

    def status(self) -> Dict[str, Dict[str, object]]:
        """各探针的调度状态"""
        return {
            name: {
                "state": str(slot.state),
                "last_state": str(slot.last_state) if slot.last_state else None,
                "runs": slot.runs,
                "skipped": slot.skipped,
                "next_due": slot.next_due,
            }
            for name, slot in self._slots.items()
        }
