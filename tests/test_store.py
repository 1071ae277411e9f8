"""
Tests for the DescriptorStore module.

This test suite verifies:
- Descriptor save/load roundtrip with its algorithm tag
- Re-enrollment replacing a descriptor in place
- Student deletion and listing
- Scan logging
- Refusal of student ids that would escape the descriptor directory
- Gallery loading, including entries from another algorithm version

Run with: pytest tests/test_store.py -v
"""

import math
import os
import shutil
import sys
import tempfile

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from faceid.descriptors import Descriptor
from faceid.matching import MatchResult
from faceid.store import DescriptorStore, load_gallery


def make_descriptor(seed: int, version: str = "1") -> Descriptor:
    rng = np.random.default_rng(seed)
    return Descriptor(values=rng.random(944), algorithm="block_pattern", version=version)


class TestDescriptorStore:
    """Tests for the DescriptorStore class."""

    @pytest.fixture
    def temp_storage(self):
        """Create a temporary directory for testing."""
        temp_dir = tempfile.mkdtemp(prefix="store_test_")
        yield {
            "storage_dir": os.path.join(temp_dir, "descriptors"),
            "db_path": os.path.join(temp_dir, "test.sqlite"),
            "temp_dir": temp_dir,
        }
        # Cleanup
        shutil.rmtree(temp_dir)

    @pytest.fixture
    def store(self, temp_storage):
        s = DescriptorStore(
            storage_dir=temp_storage["storage_dir"],
            db_path=temp_storage["db_path"],
        )
        yield s
        s.close()

    def test_init_creates_directories(self, temp_storage):
        """Test that the store creates the storage directory and database."""
        store = DescriptorStore(temp_storage["storage_dir"], temp_storage["db_path"])

        assert os.path.isdir(temp_storage["storage_dir"])
        assert os.path.exists(temp_storage["db_path"])
        store.close()

    def test_save_and_load(self, store):
        """Test that values and tag survive a roundtrip."""
        descriptor = make_descriptor(1)
        path = store.save_descriptor("S-001", descriptor, student_name="Alice")

        assert os.path.exists(path)

        loaded = store.load_descriptor("S-001")
        assert loaded is not None
        assert loaded.tag == "block_pattern/1"
        np.testing.assert_array_equal(loaded.values, descriptor.values)

    def test_load_unknown(self, store):
        assert store.load_descriptor("S-404") is None

    def test_load_missing_file(self, store):
        """A student whose .npz vanished loads as None."""
        path = store.save_descriptor("S-001", make_descriptor(1))
        os.remove(path)

        assert store.load_descriptor("S-001") is None

    def test_reenroll_replaces_in_place(self, store):
        """Test that re-enrolling replaces the descriptor and keeps roster order."""
        store.save_descriptor("S-001", make_descriptor(1), student_name="Alice")
        store.save_descriptor("S-002", make_descriptor(2), student_name="Bob")

        replacement = make_descriptor(3)
        store.save_descriptor("S-001", replacement, student_name="Alice B.")

        students = store.list_students()
        assert [s["student_id"] for s in students] == ["S-001", "S-002"]
        assert students[0]["student_name"] == "Alice B."
        np.testing.assert_array_equal(store.load_descriptor("S-001").values, replacement.values)

    @pytest.mark.parametrize("student_id", ["../../escaped", "a/b", "..", ".hidden", "", "S 001"])
    def test_rejects_unsafe_student_id(self, store, temp_storage, student_id):
        """Ids that are not plain file names are refused before anything is written."""
        with pytest.raises(ValueError):
            store.save_descriptor(student_id, make_descriptor(1))

        assert store.list_students() == []
        assert not os.path.exists(os.path.join(temp_storage["temp_dir"], "escaped.npz"))

    def test_dotted_student_id(self, store):
        store.save_descriptor("2024.S-001", make_descriptor(1))
        assert store.load_descriptor("2024.S-001") is not None

    def test_get_student(self, store):
        assert store.get_student("S-001") is None

        store.save_descriptor("S-001", make_descriptor(1), student_name="Alice")

        student = store.get_student("S-001")
        assert student["student_name"] == "Alice"
        assert student["algorithm"] == "block_pattern"
        assert student["version"] == "1"
        assert student["length"] == 944

    def test_delete_student(self, store):
        """Test deleting a student removes file and row."""
        path = store.save_descriptor("S-001", make_descriptor(1))

        assert store.delete_student("S-001") is True
        assert not os.path.exists(path)
        assert store.load_descriptor("S-001") is None
        assert store.list_students() == []

    def test_delete_unknown(self, store):
        assert store.delete_student("S-404") is False

    def test_log_scan(self, store):
        """Test logging verification results."""
        store.save_descriptor("S-001", make_descriptor(1))
        result = MatchResult(matched=True, candidate_id="S-001", score=0.05)

        log_id = store.log_scan("identify", result)
        assert log_id > 0

        logs = store.get_scan_logs(student_id="S-001")
        assert len(logs) == 1
        assert logs[0]["mode"] == "identify"
        assert logs[0]["score"] == pytest.approx(0.05)
        assert logs[0]["matched"] is True

    def test_log_scan_without_score(self, store):
        """An empty-gallery result has no finite score to store."""
        result = MatchResult(matched=False, candidate_id=None, score=math.inf)
        store.log_scan("scan", result, outing_type="Local", attempts_made=1)

        logs = store.get_scan_logs()
        assert logs[0]["score"] is None
        assert logs[0]["student_id"] is None
        assert logs[0]["outing_type"] == "Local"
        assert logs[0]["attempts_made"] == 1

    def test_get_stats(self, store):
        store.save_descriptor("S-001", make_descriptor(1))
        store.log_scan("identify", MatchResult(True, "S-001", 0.05))
        store.log_scan("identify", MatchResult(False, None, 0.6))

        stats = store.get_stats()
        assert stats == {"total_students": 1, "total_scans": 2, "successful_scans": 1}


class TestLoadGallery:
    """Tests for building a Gallery from the store."""

    @pytest.fixture
    def store(self, tmp_path):
        s = DescriptorStore(str(tmp_path / "descriptors"), str(tmp_path / "test.sqlite"))
        yield s
        s.close()

    def test_roster_order(self, store):
        for i, student_id in enumerate(["S-003", "S-001", "S-002"]):
            store.save_descriptor(student_id, make_descriptor(i), student_name=f"Student {i}")

        gallery = load_gallery(store, expected_tag="block_pattern/1")

        assert [e.student_id for e in gallery] == ["S-003", "S-001", "S-002"]
        assert gallery.get("S-001").metadata["student_name"] == "Student 1"

    def test_other_version_skipped(self, store):
        store.save_descriptor("S-001", make_descriptor(1))
        store.save_descriptor("S-002", make_descriptor(2, version="0"))

        gallery = load_gallery(store, expected_tag="block_pattern/1")

        assert len(gallery) == 1
        assert "S-002" not in gallery

    def test_unreadable_descriptor_kept_without_vector(self, store):
        path = store.save_descriptor("S-001", make_descriptor(1))
        os.remove(path)

        gallery = load_gallery(store, expected_tag="block_pattern/1")
        assert "S-001" in gallery
        assert gallery.get("S-001").has_descriptor is False
