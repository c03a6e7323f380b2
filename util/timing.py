# util/timing.py
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator
import logging


@contextmanager
def timed(logger: logging.Logger, name: str, **kv: Any) -> Iterator[Dict[str, Any]]:
    """
    Usage:
      with timed(logger, "blob.store", name=display_name) as t:
          ...
          t["bytes"] = n
    Emits one INFO on exit: "<name>.done ms=<int> key=val ..." (or "<name>.failed"
    when the block raised). Keys assigned to the yielded dict are appended.
    """
    extra: Dict[str, Any] = {}
    t0 = time.perf_counter()
    ok = False
    try:
        yield extra
        ok = True
    finally:
        dt_ms = int((time.perf_counter() - t0) * 1000)
        fields = {**kv, **extra}
        suffix = "".join(f" {k}={v}" for k, v in fields.items())
        logger.info("%s.%s ms=%d%s", name, "done" if ok else "failed", dt_ms, suffix)
