"""Stage timing helpers."""

import logging
import time
from collections.abc import Callable
from contextlib import contextmanager

from torch.profiler import record_function


@contextmanager
def timed_stage(
    name: str,
    logger: logging.Logger,
    synchronize: Callable[[], None] | None = None,
):
    """Time a pipeline stage and log its wall-clock duration.

    The block is also labelled with ``record_function`` so it shows up as a
    named range when run under ``torch.profiler``.

    Args:
        name: Stage name (e.g., "plane_sweep", "tgv").
        logger: Logger that receives the timing message.
        synchronize: Called after the block so queued device work is
            included in the timing (e.g. ``ComputeContext.synchronize``).

    Yields:
        None.
    """
    start = time.perf_counter()
    with record_function(name):
        yield
        if synchronize is not None:
            synchronize()
    elapsed_ms = (time.perf_counter() - start) * 1000.0
    logger.info("Stage %s completed in %.0f ms", name, elapsed_ms)
