import os
import threading
import time

import pytest

from hlsserve.transcode import (
    PlaylistReader,
    PlaylistReadError,
    PlaylistTransformer,
    PlaylistWaitCancelled,
    PlaylistWaitTimeout,
    TranscodeLaunchError,
)
from hlsserve.transcode.playlist import count_occurrences

HEADER = "#EXTM3U\n#EXT-X-VERSION:3\n#EXT-X-ALLOW-CACHE:YES\n#EXT-X-TARGETDURATION:11\n"


def segments(count, directory="/tmp/x", base="show", extension=".ts"):
    return "".join(
        f"#EXTINF:10.000000,\n{directory}/segment-{base}{i:03d}{extension}\n" for i in range(count)
    )


class ScriptedReader(PlaylistReader):
    """Returns a new snapshot of the backing text on every poll."""

    def __init__(self, snapshots, **kwargs):
        super().__init__(poll_interval=0, **kwargs)
        self.snapshots = list(snapshots)
        self.reads = 0

    def _read_text(self, path):
        text = self.snapshots[min(self.reads, len(self.snapshots) - 1)]
        self.reads += 1
        return text


def test_count_occurrences_is_case_insensitive():
    assert count_occurrences("#EXTINF:1\n#extinf:2\n#ExtInf:3", "#EXTINF:") == 3
    assert count_occurrences("", "#EXTINF:") == 0


def test_read_without_wait_returns_current_text(tmp_path):
    path = tmp_path / "a.m3u8"
    path.write_text(HEADER)

    assert PlaylistReader().read_manifest(str(path), False) == HEADER


def test_read_without_wait_raises_for_missing_file(tmp_path):
    with pytest.raises(PlaylistReadError):
        PlaylistReader().read_manifest(str(tmp_path / "missing.m3u8"), False)


def test_wait_blocks_until_three_segments():
    reader = ScriptedReader([
        HEADER,
        HEADER + segments(1),
        HEADER + segments(2),
        HEADER + segments(3),
        HEADER + segments(4),
    ])

    text = reader.read_manifest("ignored.m3u8", True)

    assert reader.reads == 4
    assert count_occurrences(text, "#EXTINF:") == 3


def test_wait_tolerates_file_appearing_late(tmp_path):
    path = tmp_path / "late.m3u8"

    def write_later():
        time.sleep(0.05)
        with open(path, "w", encoding="utf-8") as f:
            f.write(HEADER)
        for i in range(3):
            time.sleep(0.02)
            with open(path, "a", encoding="utf-8") as f:
                f.write(segments(1, base=f"s{i}"))

    writer = threading.Thread(target=write_later)
    writer.start()
    text = PlaylistReader(poll_interval=0.005, timeout=5).read_manifest(str(path), True)
    writer.join()

    assert count_occurrences(text, "#EXTINF:") >= 3


def test_wait_timeout(tmp_path):
    path = tmp_path / "stuck.m3u8"
    path.write_text(HEADER + segments(1))

    with pytest.raises(PlaylistWaitTimeout):
        PlaylistReader(poll_interval=0.005).read_manifest(str(path), True, timeout=0.05)


def test_wait_cancelled(tmp_path):
    path = tmp_path / "stuck.m3u8"
    path.write_text(HEADER)
    cancel = threading.Event()
    threading.Timer(0.05, cancel.set).start()

    with pytest.raises(PlaylistWaitCancelled):
        PlaylistReader(poll_interval=0.005).read_manifest(str(path), True, cancel_event=cancel)


def test_wait_stops_when_launch_failed(tmp_path):
    checks = []

    def is_failed():
        checks.append(1)
        return len(checks) >= 3

    with pytest.raises(TranscodeLaunchError):
        PlaylistReader(poll_interval=0.005, timeout=5).read_manifest(
            str(tmp_path / "never.m3u8"), True, is_failed=is_failed
        )
    assert len(checks) == 3


def test_wait_returns_finished_short_playlist():
    reader = ScriptedReader([HEADER, HEADER + segments(2) + "#EXT-X-ENDLIST\n"], timeout=5)

    text = reader.read_manifest("ignored.m3u8", True)

    assert reader.reads == 2
    assert count_occurrences(text, "#EXTINF:") == 2


@pytest.mark.parametrize("extension", [".ts", ".aac", ".mp3"])
def test_segment_references_are_rewritten(extension):
    directory = os.path.join(os.sep + "tmp", "x")
    raw = HEADER + f"#EXTINF:10.000000,\n{directory}{os.sep}segment-show001{extension}\n"

    text = PlaylistTransformer().transform(raw, directory)

    assert f"segments/show001/stream{extension}" in text.splitlines()
    assert directory not in text
    assert "segment-" not in text


def test_live_playlist_is_event():
    text = PlaylistTransformer().transform(HEADER + segments(3), "/tmp/x")
    lines = text.splitlines()

    index = lines.index("#EXT-X-ALLOW-CACHE:YES")
    assert lines[index - 1] == "#EXT-X-PLAYLIST-TYPE:EVENT"


def test_finished_playlist_is_vod():
    raw = HEADER + segments(3) + "#EXT-X-ENDLIST\n"
    text = PlaylistTransformer().transform(raw, "/tmp/x")

    assert "#EXT-X-PLAYLIST-TYPE:VOD\n#EXT-X-ALLOW-CACHE:YES\n" in text
    assert text.endswith("#EXT-X-ENDLIST\n")


def test_end_marker_detection_ignores_case():
    assert PlaylistTransformer.playlist_type("#ext-x-endlist") == "VOD"
    assert PlaylistTransformer.playlist_type("#EXTM3U\n") == "EVENT"


def test_missing_cache_tag_skips_injection():
    raw = "#EXTM3U\n" + segments(3)

    text = PlaylistTransformer().transform(raw, "/tmp/x")

    assert "#EXT-X-PLAYLIST-TYPE" not in text
    assert "segments/show002/stream.ts" in text


def test_transform_is_deterministic():
    raw = HEADER + segments(5)
    transformer = PlaylistTransformer()

    assert transformer.transform(raw, "/tmp/x") == transformer.transform(raw, "/tmp/x")


def test_crlf_line_endings_are_preserved():
    raw = HEADER.replace("\n", "\r\n") + "#EXTINF:10.0,\r\n/tmp/x/segment-show000.ts\r\n"

    text = PlaylistTransformer().transform(raw, "/tmp/x")

    assert "#EXT-X-PLAYLIST-TYPE:EVENT\r\n#EXT-X-ALLOW-CACHE:YES\r\n" in text
    assert "segments/show000/stream.ts\r\n" in text
