import tempfile
from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from moodstream.domain.library import ContentIndexManager, IndexStore, MediaStorage

_operations = st.lists(
    st.one_of(
        st.tuples(st.just("ingest"), st.sampled_from(["r1", "r2", "r3", "r4"]), st.integers(min_value=1, max_value=10_000)),
        st.tuples(st.just("remove"), st.sampled_from(["r1", "r2", "r3", "r4"]), st.just(0)),
        st.tuples(st.just("verify"), st.just(""), st.just(0)),
    ),
    max_size=25,
)


@pytest.mark.unit
@settings(max_examples=40, deadline=None)
@given(_operations)
def test_total_size_always_equals_sum_of_entries(operations):
    with tempfile.TemporaryDirectory() as workdir:
        root = Path(workdir) / "media"
        manager = ContentIndexManager(MediaStorage(str(root)), IndexStore(str(Path(workdir) / "index.json")))

        for op, retrieval_id, size in operations:
            if op == "ingest":
                (root / f"{retrieval_id}.mp3").write_bytes(b"\0" * size)
                manager.ingest(
                    {
                        "retrieval_id": retrieval_id,
                        "track_id": f"track-{retrieval_id}",
                        "status": "completed",
                        "file_path": f"{retrieval_id}.mp3",
                        "file_size_bytes": size,
                    },
                    {"title": retrieval_id},
                )
            elif op == "remove":
                manager.remove(retrieval_id)
            else:
                manager.verify_integrity()

            assert manager.total_size_bytes == sum(t.file_size_bytes for t in manager.tracks())
        assert len({t.retrieval_id for t in manager.tracks()}) == len(manager.tracks())
