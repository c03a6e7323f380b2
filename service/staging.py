# service/staging.py
import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Union
from uuid import uuid4
from config.settings import settings
from util.functions import safe_filename

logger = logging.getLogger(__name__)


class StagingArea:
    """
    Local directory holding downloaded files until they are stored.
    Every artifact handed out by `artifact()` is removed when the block exits,
    whether it finished, raised or was cancelled.
    """

    def __init__(self, root: Union[str, Path] = settings.STAGING_DIR) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def _path_for(self, source_id: str, name: str) -> Path:
        return self._root / (
            f"{safe_filename(source_id, 64)}_{uuid4().hex[:9]}_{safe_filename(name)}"
        )

    @asynccontextmanager
    async def artifact(self, source_id: str, name: str) -> AsyncIterator[Path]:
        await asyncio.to_thread(self._root.mkdir, parents=True, exist_ok=True)
        path = self._path_for(source_id, name)
        try:
            yield path
        finally:
            # Synchronous on purpose: must still run inside a cancelled task.
            self.remove(path)

    @staticmethod
    def remove(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.error("staging.cleanup.error path=%s err=%s", path, e)
        else:
            logger.debug("staging.cleanup path=%s", path)

    @staticmethod
    async def iter_file(path: Path, chunk_size: int = 256 * 1024) -> AsyncIterator[bytes]:
        with open(path, "rb") as fh:
            while True:
                chunk = await asyncio.to_thread(fh.read, chunk_size)
                if not chunk:
                    break
                yield chunk

    def leftovers(self) -> list[Path]:
        if not self._root.is_dir():
            return []
        return sorted(p for p in self._root.iterdir() if p.is_file())
