import re

import pytest

from vidgen.core.exceptions import FileSystemError, ValidationError
from vidgen.services.storage import FileType, to_camel_case


@pytest.mark.parametrize("name, expected", [
    ("My Cool Project!", "myCoolProject"),
    ("  ", "untitled"),
    ("내 프로젝트", "내프로젝트"),
])
def test_to_camel_case(name, expected):
    assert to_camel_case(name) == expected


def test_file_name_carries_job_id(storage):
    plain = storage.file_name("Sea Trip", FileType.MERGED, 1)
    tagged = storage.file_name("Sea Trip", FileType.MERGED, 1, job_id="job-1")

    assert re.fullmatch(r"\d{8}_seaTrip_merged_001\.mp4", plain)
    assert tagged == plain.replace(".mp4", "_job-1.mp4")


def test_full_path_places_artifacts_by_type(storage):
    path = storage.full_path("Sea Trip", FileType.THUMB, 3, extension="jpg")
    assert path.parent == storage.base_path / "thumbnails" / "seaTrip"
    assert path.parent.is_dir()
    with pytest.raises(ValidationError):
        storage.file_name("Sea Trip", "poster", 1)


def test_require_file(storage, tmp_path):
    missing = tmp_path / "missing.mp4"
    empty = tmp_path / "empty.mp4"
    empty.write_bytes(b"")
    full = tmp_path / "full.mp4"
    full.write_bytes(b"video")

    for path in (missing, empty):
        with pytest.raises(FileSystemError):
            storage.require_file(path)
    assert storage.require_file(str(full)) == full


def test_read_and_delete(storage, tmp_path):
    path = storage.write_bytes(tmp_path / "nested" / "frame.png", b"png")
    assert storage.read_bytes(path) == b"png"
    assert storage.delete_file(path) is True
    assert storage.delete_file(path) is False
    with pytest.raises(FileSystemError):
        storage.read_bytes(path)
