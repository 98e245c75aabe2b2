import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Set

from ..config import MoverConfig
from ..exceptions import MigrationCancelled, PdsMoverError
from ..pds.agent import BlobPage
from .session import MissingBlob
from .status import StatusLike, as_sink

logger = logging.getLogger(__name__)

BLOBS_LABEL = "Migrating blobs"
MISSING_BLOBS_LABEL = "Migrating missing blobs"


@dataclass
class BlobSyncResult:
    uploaded: int = 0
    pages: int = 0
    failures: List[MissingBlob] = field(default_factory=list)
    # a listing page could not be fetched; some blobs were never attempted
    listing_incomplete: bool = False


class BlobSyncEngine:
    """
    Copies blobs from the old PDS to the new one, one page at a time.

    A blob that fails to copy is logged and recorded, never fatal: the
    engine keeps going and the destination's own missing-blob list is used
    afterwards to catch whatever slipped through.
    """

    def __init__(self, source: Any, destination: Any, did: str,
                 status: StatusLike = None,
                 config: Optional[MoverConfig] = None,
                 cancel: Any = None) -> None:
        self._source = source
        self._destination = destination
        self._did = did
        self._status = as_sink(status)
        self._config = config or MoverConfig()
        self._cancel = cancel

    # ---------- passes ----------

    def sync_all(self, total: int) -> BlobSyncResult:
        """Walk the source's full blob listing and upload every blob."""
        return self._run(
            BLOBS_LABEL,
            total,
            lambda cursor: self._source.list_blobs(self._did, cursor, self._config.page_size),
        )

    def transfer_missing(self, total: int) -> BlobSyncResult:
        """Retry only the blobs the destination still reports as missing."""
        return self._run(
            MISSING_BLOBS_LABEL,
            total,
            lambda cursor: self._destination.list_missing_blobs(cursor, self._config.page_size),
        )

    # ---------- internals ----------

    def _run(self, label: str, total: int,
             list_page: Callable[[Optional[str]], BlobPage]) -> BlobSyncResult:
        result = BlobSyncResult()
        seen: Set[str] = set()
        cursor: Optional[str] = None
        while True:
            self._check_cancelled()
            self._status.progress(label, result.uploaded, total)

            page = self._list_page(list_page, cursor)
            if page is None:
                result.listing_incomplete = True
                break
            result.pages += 1

            for cid in page.cids:
                if cid in seen:
                    continue
                seen.add(cid)
                self._check_cancelled()
                self._transfer(cid, label, total, result)

            cursor = page.cursor
            if not cursor:
                break

        logger.info("%s: %d uploaded, %d failed over %d page(s)",
                    label, result.uploaded, len(result.failures), result.pages)
        return result

    def _list_page(self, list_page: Callable[[Optional[str]], BlobPage],
                   cursor: Optional[str]) -> Optional[BlobPage]:
        attempts = max(self._config.max_retries, 1)
        for attempt in range(1, attempts + 1):
            try:
                return list_page(cursor)
            except PdsMoverError as e:
                logger.warning("Listing blobs at cursor %r failed (attempt %d/%d): %s",
                               cursor, attempt, attempts, e)
                if attempt < attempts:
                    time.sleep(self._config.retry_delay)
        logger.error("Giving up listing blobs at cursor %r", cursor)
        return None

    def _transfer(self, cid: str, label: str, total: int, result: BlobSyncResult) -> None:
        try:
            blob = self._source.get_blob(self._did, cid)
            self._destination.upload_blob(blob.data, blob.content_type)
        except PdsMoverError as e:
            logger.warning("Failed to copy blob %s: %s", cid, e)
            result.failures.append(MissingBlob(cid, str(e)))
            return

        result.uploaded += 1
        if result.uploaded % self._config.progress_every == 0:
            self._status.progress(label, result.uploaded, total)

    def _check_cancelled(self) -> None:
        if self._cancel is not None and self._cancel.is_set():
            raise MigrationCancelled("Migration cancelled during blob transfer")
