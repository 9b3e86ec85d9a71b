import contextlib
import time
from typing import Generator

import termcolor
from loguru import logger


@contextlib.contextmanager
def stopwatch(label: str = "unlabeled block") -> Generator[None, None, None]:
    """Context manager for measuring runtime. The elapsed time is printed, and also
    sent to the logger at debug level."""
    start_time = time.time()
    print("\n========")
    print(f"Running ({label})")
    try:
        yield
    finally:
        elapsed = time.time() - start_time
        print(f"{termcolor.colored(f'{elapsed:.5f}', attrs=['bold'])} seconds")
        print("========")
        logger.debug("({}) took {:.5f} seconds", label, elapsed)
