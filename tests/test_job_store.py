from pathlib import Path

from splitjob.core.models import JobStatus, JobStatusPayload, PageDetails, PageStatus
from splitjob.runtime.job_store import JobStore
from splitjob.runtime.resources import ResourceStore


def _payload(*pages: tuple[int, str]) -> JobStatusPayload:
    return JobStatusPayload.model_validate(
        {
            "page_count": len(pages),
            "pages": {f"page_{number}": {"page": number, "status": status} for number, status in pages},
        }
    )


def test_upsert_never_drops_pages() -> None:
    store = JobStore()
    store.create("doc-1")

    store.upsert_pages("doc-1", _payload((1, "NEW"), (2, "NEW")))
    store.upsert_pages("doc-1", _payload((2, "READY")))

    job = store.get("doc-1")
    assert sorted(job.pages) == ["page_1", "page_2"]
    assert job.page(2).remote_status == PageStatus.READY
    assert job.total_pages == 1


def test_snapshots_are_detached_from_store() -> None:
    store = JobStore()
    store.create("doc-1")
    store.upsert_pages("doc-1", _payload((1, "NEW")))

    snapshot = store.get("doc-1")
    snapshot.pages["page_1"].raw_status = "MUTATED"

    assert store.get("doc-1").page(1).raw_status == "NEW"


def test_status_transitions_stamp_times() -> None:
    store = JobStore()
    store.create("doc-1")

    store.set_status("doc-1", JobStatus.RUNNING)
    running = store.get("doc-1")
    store.set_status("doc-1", JobStatus.COMPLETE)
    done = store.get("doc-1")

    assert running.started_at is not None and running.ended_at is None
    assert done.ended_at is not None and done.ended_at >= done.started_at


def test_replaced_and_removed_handles_are_released(tmp_path: Path) -> None:
    resources = ResourceStore(tmp_path)
    store = JobStore(resources)
    store.create("doc-1")
    store.upsert_pages("doc-1", _payload((1, "READY")))

    first = resources.write("doc-1", 1, "page_1.png", b"one")
    store.set_page_resources("doc-1", "page_1", image_ref=first, file_ref=None, details=None)
    second = resources.write("doc-1", 1, "page_1.png", b"two")
    store.set_page_resources("doc-1", "page_1", image_ref=second, file_ref=None, details=PageDetails())

    assert not first.path.exists()
    assert second.path.read_bytes() == b"two"
    assert store.get("doc-1").page(1).details is not None

    store.remove("doc-1")
    assert not second.path.exists()
    assert store.get("doc-1") is None


def test_recreate_releases_previous_handles(tmp_path: Path) -> None:
    resources = ResourceStore(tmp_path)
    store = JobStore(resources)
    store.create("doc-1")
    store.upsert_pages("doc-1", _payload((1, "READY")))
    handle = resources.write("doc-1", 1, "page_1.png", b"old")
    store.set_page_resources("doc-1", "page_1", image_ref=handle, file_ref=None, details=None)

    store.create("doc-1")

    assert not handle.path.exists()
    assert store.get("doc-1").pages == {}


def test_failing_observer_does_not_block_others() -> None:
    store = JobStore()
    seen: list[int] = []

    def _broken(_job) -> None:
        raise ValueError("boom")

    store.subscribe("doc-1", _broken)
    unsubscribe = store.subscribe("doc-1", lambda job: seen.append(len(job.pages)))

    store.create("doc-1")
    store.upsert_pages("doc-1", _payload((1, "NEW"), (2, "NEW")))
    unsubscribe()
    store.upsert_pages("doc-1", _payload((3, "NEW")))

    assert seen == [0, 2]


def test_set_page_detail_replaces_details() -> None:
    store = JobStore()
    store.create("doc-1")
    store.upsert_pages("doc-1", _payload((1, "READY")))

    store.set_page_detail("doc-1", "page_1", PageDetails.model_validate({"REVISION": []}))

    assert store.get("doc-1").page(1).details.revision == []
