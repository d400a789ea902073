import asyncio
import logging
import math
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum

from bank_loadgen.aggregator import MetricsSink, Sample
from bank_loadgen.metrics import ACTIVE_VUS
from bank_loadgen.profiles import Scenario

logger = logging.getLogger(__name__)

Iteration = Callable[[random.Random], Awaitable[object]]


class ScenarioState(StrEnum):
    PENDING = "pending"
    RAMPING = "ramping"
    DRAINING = "draining"
    DONE = "done"


@dataclass(frozen=True)
class Tick:
    elapsed: float
    target: float
    active: int


def stage_index(scenario: Scenario, elapsed: float) -> int:
    for index, stage in enumerate(scenario.stages):
        if elapsed < stage.duration:
            return index
        elapsed -= stage.duration
    return len(scenario.stages) - 1


def target_at(scenario: Scenario, elapsed: float) -> float:
    """VU target ``elapsed`` seconds into the scenario.

    Each stage moves linearly from the previous stage's target (``start_vus``
    for the first) to its own; constant stages hold their target throughout.
    """
    previous = float(scenario.start_vus)
    for stage in scenario.stages:
        if elapsed < stage.duration:
            if stage.constant:
                return float(stage.target)
            return previous + (stage.target - previous) * (elapsed / stage.duration)
        elapsed -= stage.duration
        previous = float(stage.target)
    return previous


class ScenarioRun:
    """Live VUs of one scenario.

    Scaling down only asks a VU to stop; it leaves after the iteration it is
    in, so ``active`` counts VUs that have not been asked to stop and
    ``running`` also counts the ones still finishing.
    """

    def __init__(self, scenario: Scenario, iteration: Iteration, seed: int | None, tick_interval: float) -> None:
        self.scenario = scenario
        self.state = ScenarioState.PENDING
        self.history: list[Tick] = []
        self._iteration = iteration
        self._seed = seed
        self._tick_interval = tick_interval
        self._vus: list[tuple[asyncio.Task, asyncio.Event]] = []
        self._retiring: list[asyncio.Task] = []
        self._next_id = 0

    @property
    def active(self) -> int:
        return len(self._vus)

    @property
    def running(self) -> int:
        return sum(1 for task, _ in self._vus if not task.done()) + sum(1 for t in self._retiring if not t.done())

    def scale_to(self, target: int) -> None:
        self._retiring = [t for t in self._retiring if not t.done()]
        while len(self._vus) < target:
            stop = asyncio.Event()
            task = asyncio.create_task(self._vu(self._next_id, stop), name=f"{self.scenario.name}-vu-{self._next_id}")
            self._vus.append((task, stop))
            self._next_id += 1
        while len(self._vus) > target:
            task, stop = self._vus.pop()
            stop.set()
            self._retiring.append(task)

    async def drain(self) -> None:
        self.scale_to(0)
        await asyncio.gather(*self._retiring)
        self._retiring.clear()

    def cancel(self) -> None:
        for task, _ in self._vus:
            task.cancel()
        for task in self._retiring:
            task.cancel()

    def _rng(self, vu_id: int) -> random.Random:
        if self._seed is None:
            return random.Random()
        return random.Random(f"{self._seed}:{self.scenario.name}:{vu_id}")

    async def _vu(self, vu_id: int, stop: asyncio.Event) -> None:
        rng = self._rng(vu_id)
        logger.debug("VU %s/%d started", self.scenario.name, vu_id)
        while not stop.is_set():
            try:
                await self._iteration(rng)
            except Exception:
                logger.exception("VU %s/%d iteration failed", self.scenario.name, vu_id)
                await asyncio.sleep(self._tick_interval)
        logger.debug("VU %s/%d retired", self.scenario.name, vu_id)


class ScenarioScheduler:
    """Runs scenarios side by side, each on its own timeline.

    Every tick the number of active VUs of a running scenario is set to the
    floor of its interpolated target. A scenario's ``start_time`` counts from
    the start of the whole run.
    """

    def __init__(self, tick_interval: float = 0.1, seed: int | None = None, sink: MetricsSink | None = None) -> None:
        self._tick_interval = tick_interval
        self._seed = seed
        self._sink = sink
        self.runs: list[ScenarioRun] = []

    def add(self, scenario: Scenario, iteration: Iteration) -> ScenarioRun:
        run = ScenarioRun(scenario, iteration, self._seed, self._tick_interval)
        self.runs.append(run)
        return run

    async def run(self) -> None:
        run_start = asyncio.get_running_loop().time()
        await asyncio.gather(*(self._drive(run, run_start) for run in self.runs))
        logger.info("All scenarios finished")

    async def _drive(self, run: ScenarioRun, run_start: float) -> None:
        loop = asyncio.get_running_loop()
        scenario = run.scenario
        delay = scenario.start_time - (loop.time() - run_start)
        if delay > 0:
            await asyncio.sleep(delay)
        started = loop.time()
        run.state = ScenarioState.RAMPING
        logger.info("Scenario %s started (%d stages, %.0fs)", scenario.name, len(scenario.stages), scenario.duration)
        try:
            while (elapsed := loop.time() - started) < scenario.duration:
                if stage_index(scenario, elapsed) == len(scenario.stages) - 1 and scenario.stages[-1].target == 0:
                    run.state = ScenarioState.DRAINING
                target = target_at(scenario, elapsed)
                run.scale_to(math.floor(target))
                self._observe(run, elapsed, target)
                await asyncio.sleep(min(self._tick_interval, scenario.duration - elapsed))
            run.state = ScenarioState.DRAINING
            run.scale_to(0)
            self._observe(run, loop.time() - started, 0.0)
            await run.drain()
        except asyncio.CancelledError:
            run.cancel()
            raise
        run.state = ScenarioState.DONE
        ACTIVE_VUS.labels(scenario=scenario.name).set(0)
        logger.info("Scenario %s done", scenario.name)

    def _observe(self, run: ScenarioRun, elapsed: float, target: float) -> None:
        run.history.append(Tick(elapsed, target, run.active))
        ACTIVE_VUS.labels(scenario=run.scenario.name).set(run.active)
        if self._sink is not None:
            self._sink.record(Sample("vus", float(run.active), {"scenario": run.scenario.name}))
