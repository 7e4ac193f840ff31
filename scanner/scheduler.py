"""
scheduler.py

Bounded worker pool for probe tasks with a global scan deadline.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Callable, Dict, Hashable, Optional, Sequence, TypeVar

from colorama import Fore, Style
from tqdm import tqdm

from utils import app_logger, config


K = TypeVar("K", bound=Hashable)
R = TypeVar("R")


class ProbeScheduler:
    """
    Runs one task per key on a fixed-size thread pool.

    Excess tasks wait in the executor queue, so at most `workers` tasks
    are ever in flight. Completion order is arbitrary; callers order the
    returned mapping themselves. When the deadline passes, unfinished
    tasks are abandoned and replaced by `on_abandon(key)`.
    """

    def __init__(
        self,
        workers: Optional[int] = None,
        deadline: Optional[float] = None,
        show_progress: bool = False,
    ) -> None:
        self.workers = max(1, int(workers or config.get("scan.workers", 10)))
        self.deadline = deadline
        self.show_progress = show_progress
        self.logger = app_logger
        self.abandoned = 0

    def _remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def run(
        self,
        keys: Sequence[K],
        task: Callable[[K], R],
        on_abandon: Callable[[K], R],
    ) -> Dict[K, R]:
        """
        Execute *task* for every key and collect the results.

        Args:
            keys: Unique work items
            task: Callable run on a worker thread for each key
            on_abandon: Builds the result for a key whose task failed or
                did not finish before the deadline

        Returns:
            Mapping of every key to its result
        """
        results: Dict[K, R] = {}
        if not keys:
            return results

        self.logger.debug(f"Scheduling {len(keys)} probe(s) on {self.workers} worker(s)")
        executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="probe")
        futures = {executor.submit(task, key): key for key in keys}

        with tqdm(
            total=len(futures),
            desc=f"{Fore.CYAN}Probing{Style.RESET_ALL}",
            unit="port",
            disable=not self.show_progress,
            colour="cyan",
        ) as pbar:
            try:
                for future in as_completed(futures, timeout=self._remaining()):
                    key = futures[future]
                    try:
                        results[key] = future.result()
                    except Exception as e:
                        self.logger.error(f"Probe task for {key} failed: {e}", exc_info=True)
                        results[key] = on_abandon(key)
                    pbar.update(1)
            except FuturesTimeoutError:
                pending = [key for key in futures.values() if key not in results]
                self.abandoned = len(pending)
                self.logger.warning(
                    f"Scan deadline reached, abandoning {len(pending)} in-flight probe(s)"
                )
                for future in futures:
                    future.cancel()
                for key in pending:
                    results[key] = on_abandon(key)
            finally:
                executor.shutdown(wait=False, cancel_futures=True)

        return results
