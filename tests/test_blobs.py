"""Tests for the blob sync engine."""

import threading

import pytest

from fakes import DID, cid
from pdsmover.core.blobs import BLOBS_LABEL, MISSING_BLOBS_LABEL, BlobSyncEngine
from pdsmover.exceptions import MigrationCancelled


def make_engine(old_pds, new_pds, sink, config, cancel=None):
    return BlobSyncEngine(old_pds, new_pds, DID, sink, config, cancel)


class TestSyncAll:
    def test_paginates_in_cursor_order(self, old_pds, new_pds, sink, config) -> None:
        """250 blobs at 100 per page means three listings: None, c1, c2."""
        old_pds.blob_cids = [cid(i) for i in range(250)]

        result = make_engine(old_pds, new_pds, sink, config).sync_all(250)

        listings = old_pds.args_for("list_blobs")
        assert [args[1] for args in listings] == [None, "c1", "c2"]
        assert all(args[2] == 100 for args in listings)
        assert result.uploaded == 250
        assert result.pages == 3
        assert new_pds.uploaded == old_pds.blob_cids
        assert result.failures == []

    def test_failed_blob_does_not_stop_the_run(self, old_pds, new_pds, sink, config) -> None:
        old_pds.blob_cids = [cid(i) for i in range(1, 101)]
        old_pds.failing_blobs = {cid(37)}

        result = make_engine(old_pds, new_pds, sink, config).sync_all(100)

        fetched = [args[1] for args in old_pds.args_for("get_blob")]
        assert fetched == old_pds.blob_cids
        assert cid(37) not in new_pds.uploaded
        assert len(new_pds.uploaded) == 99
        assert [f.cid for f in result.failures] == [cid(37)]
        assert "disk on fire" in result.failures[0].error

    def test_progress_at_page_start_and_every_ten(self, old_pds, new_pds, sink, config) -> None:
        old_pds.blob_cids = [cid(i) for i in range(25)]
        config.page_size = 20

        make_engine(old_pds, new_pds, sink, config).sync_all(25)

        assert sink.progress_events == [
            (BLOBS_LABEL, 0, 25),
            (BLOBS_LABEL, 10, 25),
            (BLOBS_LABEL, 20, 25),
            (BLOBS_LABEL, 20, 25),
        ]
        assert sink.messages[0] == "Migrating blobs: 0/25"

    def test_empty_listing(self, old_pds, new_pds, sink, config) -> None:
        result = make_engine(old_pds, new_pds, sink, config).sync_all(0)

        assert result.uploaded == 0
        assert result.pages == 1
        assert new_pds.uploaded == []

    def test_listing_failure_is_retried_then_marked_incomplete(
        self, old_pds, new_pds, sink, config
    ) -> None:
        old_pds.blob_cids = [cid(i) for i in range(150)]
        old_pds.failing_list_cursors = {"c1"}

        result = make_engine(old_pds, new_pds, sink, config).sync_all(150)

        listings = [args[1] for args in old_pds.args_for("list_blobs")]
        assert listings == [None, "c1", "c1"]
        assert result.listing_incomplete
        assert result.uploaded == 100

    def test_cancel_stops_between_blobs(self, old_pds, new_pds, sink, config) -> None:
        old_pds.blob_cids = [cid(i) for i in range(30)]
        cancel = threading.Event()

        original_upload = new_pds.upload_blob

        def upload_then_cancel(data, content_type):
            original_upload(data, content_type)
            if len(new_pds.uploaded) == 5:
                cancel.set()

        new_pds.upload_blob = upload_then_cancel

        with pytest.raises(MigrationCancelled):
            make_engine(old_pds, new_pds, sink, config, cancel).sync_all(30)
        assert len(new_pds.uploaded) == 5


class TestTransferMissing:
    def test_only_missing_blobs_are_copied(self, old_pds, new_pds, sink, config) -> None:
        new_pds.expected_cids = [cid(i) for i in range(10)]
        new_pds.uploaded = [cid(i) for i in range(7)]

        result = make_engine(old_pds, new_pds, sink, config).transfer_missing(3)

        fetched = [args[1] for args in old_pds.args_for("get_blob")]
        assert fetched == [cid(7), cid(8), cid(9)]
        assert result.uploaded == 3
        assert sink.progress_events[0] == (MISSING_BLOBS_LABEL, 0, 3)

    def test_missing_failure_is_reported_once(self, old_pds, new_pds, sink, config) -> None:
        new_pds.expected_cids = [cid(1), cid(2)]
        old_pds.failing_blobs = {cid(2)}

        result = make_engine(old_pds, new_pds, sink, config).transfer_missing(2)

        assert [f.cid for f in result.failures] == [cid(2)]
        assert new_pds.uploaded == [cid(1)]
