"""
Tests for the revision tracker: versions are 1, 2, 3, ... with exactly one
latest, and the document's current_version always has a matching row.
"""
import threading

import pytest

from adapters.sqlite import SqliteAdapter
from conftest import as_user
from core import revisions as revision_tracker


def _new_doc(storage, uploader="admin"):
    return storage.create_document({"name": "plan", "storage_path": "s3://b/plan-v1.pdf"}, uploader)


class TestRevisionTracker:
    def test_initial_revision(self, storage, people):
        doc = _new_doc(storage)
        revs = storage.list_revisions(doc.doc_id)
        assert [r.version for r in revs] == [1]
        assert revs[0].is_latest
        assert revs[0].change_notes == "Initial upload"
        assert revs[0].uploaded_by == "admin"
        assert doc.current_version == 1

    def test_versions_are_gapless_and_latest_moves(self, storage, people, callers):
        doc = _new_doc(storage)
        for i in range(2, 6):
            rev = storage.add_revision(doc.doc_id, f"s3://b/plan-v{i}.pdf", f"round {i}", "userX")
            assert rev.version == i

        revs = storage.list_revisions(doc.doc_id)
        assert [r.version for r in revs] == [5, 4, 3, 2, 1]
        assert [r.is_latest for r in revs] == [True, False, False, False, False]

        reloaded = storage.get_document(callers["admin"], doc.doc_id)
        assert reloaded.current_version == 5
        assert reloaded.storage_path == "s3://b/plan-v5.pdf"
        assert reloaded.revision_count == 5

    def test_recent_revisions_limit(self, storage, people):
        doc = _new_doc(storage)
        for i in range(2, 9):
            storage.add_revision(doc.doc_id, f"s3://b/v{i}.pdf", None, "admin")
        assert [r.version for r in storage.list_revisions(doc.doc_id, limit=3)] == [8, 7, 6]

    def test_missing_document(self, storage):
        from fastapi import HTTPException
        with pytest.raises(HTTPException) as exc:
            storage.add_revision("nope", "s3://b/x.pdf", None, None)
        assert exc.value.status_code == 404

    def test_record_new_version_returns_none_for_unknown_doc(self, storage):
        with storage.engine.begin() as conn:
            assert revision_tracker.record_new_version(conn, "nope", "x", None, None) is None

    def test_failed_transaction_leaves_no_half_version(self, storage, people, callers):
        doc = _new_doc(storage)
        with pytest.raises(RuntimeError):
            with storage.engine.begin() as conn:
                revision_tracker.record_new_version(conn, doc.doc_id, "s3://b/v2.pdf", None, "admin")
                raise RuntimeError("upload aborted")

        reloaded = storage.get_document(callers["admin"], doc.doc_id)
        assert reloaded.current_version == 1
        assert [r.version for r in storage.list_revisions(doc.doc_id)] == [1]


class TestConcurrentUploads:
    def test_parallel_reuploads_get_distinct_versions(self, tmp_path):
        adapter = SqliteAdapter.from_url(f"sqlite:///{tmp_path / 'race.db'}")
        adapter.create_user(user_id="u", name="U", email="u@example.com", role="ADMIN")
        doc = adapter.create_document({"name": "race", "storage_path": "s3://b/r1.pdf"}, "u")

        errors = []

        def upload(n):
            try:
                for i in range(3):
                    adapter.add_revision(doc.doc_id, f"s3://b/r-{n}-{i}.pdf", None, "u")
            except Exception as e:  # collected and asserted below
                errors.append(e)

        threads = [threading.Thread(target=upload, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        versions = sorted(r.version for r in adapter.list_revisions(doc.doc_id))
        assert versions == list(range(1, 14))
        latest = [r for r in adapter.list_revisions(doc.doc_id) if r.is_latest]
        assert [r.version for r in latest] == [13]
        adapter.engine.dispose()


class TestRevisionEndpoints:
    @pytest.fixture
    def doc_id(self, client, people):
        res = client.post(
            "/documents",
            json={"name": "blast-pattern", "storage_path": "s3://b/bp-v1.pdf",
                  "category": "BLASTING", "assignee_ids": ["userX"]},
            headers=as_user("admin"),
        )
        assert res.status_code == 201
        return res.json()["doc_id"]

    def test_upload_and_list(self, client, doc_id):
        res = client.post(
            f"/documents/{doc_id}/revisions",
            json={"storage_path": "s3://b/bp-v2.pdf", "change_notes": "moved hole 14"},
            headers=as_user("userX"),
        )
        assert res.status_code == 201
        body = res.json()
        assert body["new_version"] == 2
        assert body["revision"]["is_latest"] is True
        assert body["revision"]["uploaded_by"] == "userX"

        listing = client.get(f"/documents/{doc_id}/revisions", headers=as_user("userX")).json()
        assert listing["current_version"] == 2
        assert [r["version"] for r in listing["revisions"]] == [2, 1]

    def test_viewer_cannot_upload(self, client, people):
        doc = client.post(
            "/documents", json={"name": "grading-plan", "storage_path": "s3://b/grading.pdf"}, headers=as_user("admin")
        ).json()
        res = client.post(
            f"/documents/{doc['doc_id']}/revisions",
            json={"storage_path": "s3://b/grading-v2.pdf"},
            headers=as_user("viewer"),
        )
        assert res.status_code == 403

    def test_change_notes_too_long(self, client, doc_id):
        res = client.post(
            f"/documents/{doc_id}/revisions",
            json={"storage_path": "s3://b/bp-v2.pdf", "change_notes": "x" * 2001},
            headers=as_user("admin"),
        )
        assert res.status_code == 400

    def test_hidden_document_is_not_found(self, client, doc_id):
        # userY is a blaster but not assigned
        res = client.post(
            f"/documents/{doc_id}/revisions",
            json={"storage_path": "s3://b/bp-v2.pdf"},
            headers=as_user("userY"),
        )
        assert res.status_code == 404
        assert client.get(f"/documents/{doc_id}/revisions", headers=as_user("userY")).status_code == 404
