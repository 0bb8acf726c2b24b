import os

from hlsserve.transcode import delete_partial_stream_files
from hlsserve.transcode import cleaner


def make_files(directory, *names):
    for name in names:
        (directory / name).write_bytes(b"x")


def test_deletes_only_matching_files(tmp_path):
    make_files(tmp_path, "movieA-part1.ts", "movieA-part2.ts", "movieB.ts")

    result = delete_partial_stream_files(str(tmp_path / "movieA.m3u8"))

    assert sorted(os.listdir(tmp_path)) == ["movieB.ts"]
    assert len(result.deleted) == 2
    assert result.ok


def test_match_is_case_insensitive_and_not_recursive(tmp_path):
    make_files(tmp_path, "segment-MOVIEA000.ts", "movieA.m3u8")
    nested = tmp_path / "movieA-dir"
    nested.mkdir()
    make_files(nested, "movieA-inner.ts")

    delete_partial_stream_files(str(tmp_path / "movieA.m3u8"))

    assert sorted(os.listdir(tmp_path)) == ["movieA-dir"]
    assert os.listdir(nested) == ["movieA-inner.ts"]


def test_single_failure_does_not_abort_batch(tmp_path, monkeypatch):
    make_files(tmp_path, "movieA-part1.ts", "movieA-part2.ts", "movieB.ts")
    real_remove = os.remove

    def flaky_remove(path):
        if path.endswith("movieA-part1.ts"):
            raise PermissionError("locked")
        real_remove(path)

    monkeypatch.setattr(cleaner.os, "remove", flaky_remove)

    result = delete_partial_stream_files(str(tmp_path / "movieA.m3u8"))

    assert [os.path.basename(p) for p, _ in result.failed] == ["movieA-part1.ts"]
    assert [os.path.basename(p) for p in result.deleted] == ["movieA-part2.ts"]
    assert not result.ok
    assert sorted(os.listdir(tmp_path)) == ["movieA-part1.ts", "movieB.ts"]


def test_missing_directory_is_empty_result(tmp_path):
    result = delete_partial_stream_files(str(tmp_path / "gone" / "movieA.m3u8"))

    assert result.deleted == []
    assert result.failed == []
