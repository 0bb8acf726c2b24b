import os
import threading
import time

import pytest

from hlsserve.transcode import (
    HlsConfig,
    HlsPlaylistService,
    StreamStateBuilder,
    media_root_resolver,
)
from hlsserve.transcode.ffmpeg import get_segment_base_name

HEADER = "#EXTM3U\n#EXT-X-VERSION:3\n#EXT-X-MEDIA-SEQUENCE:0\n#EXT-X-ALLOW-CACHE:YES\n#EXT-X-TARGETDURATION:11\n"


class FakeProcess:
    """Stands in for subprocess.Popen."""

    _next_pid = 1000

    def __init__(self):
        FakeProcess._next_pid += 1
        self.pid = FakeProcess._next_pid
        self.returncode = None
        self.terminated = False

    def poll(self):
        return self.returncode

    def terminate(self):
        self.terminated = True
        self.returncode = -15

    def kill(self):
        self.terminate()

    def wait(self, timeout=None):
        return self.returncode


class FakeLauncher:
    """Writes a growing segment list the way ffmpeg's ssegment muxer does."""

    def __init__(self, segments=5, interval=0.02, extension=".ts", finish=False):
        self.segments = segments
        self.interval = interval
        self.extension = extension
        self.finish = finish
        self.calls = []
        self.processes = []
        self.threads = []
        self._lock = threading.Lock()

    def start(self, arguments, output_path, cancel_event=None):
        with self._lock:
            self.calls.append((arguments, output_path))
        os.makedirs(os.path.dirname(output_path), exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(HEADER)

        process = FakeProcess()
        self.processes.append(process)
        thread = threading.Thread(target=self._write, args=(output_path, process), daemon=True)
        self.threads.append(thread)
        thread.start()
        return process

    def _write(self, output_path, process):
        directory = os.path.dirname(output_path)
        base = get_segment_base_name(output_path)
        for index in range(self.segments):
            if process.terminated:
                return
            time.sleep(self.interval)
            segment = os.path.join(directory, f"{base}{index:03d}{self.extension}")
            with open(segment, "wb") as f:
                f.write(b"\x47" * 188)
            with open(output_path, "a", encoding="utf-8") as f:
                f.write(f"#EXTINF:10.000000,\n{segment}\n")
        if self.finish:
            with open(output_path, "a", encoding="utf-8") as f:
                f.write("#EXT-X-ENDLIST\n")
        process.returncode = 0

    def join(self, timeout=5):
        for thread in self.threads:
            thread.join(timeout)


@pytest.fixture
def media_root(tmp_path):
    root = tmp_path / "media"
    root.mkdir()
    (root / "movie.mkv").write_bytes(b"not really a movie")
    (root / "song.flac").write_bytes(b"not really a song")
    return root


@pytest.fixture
def hls_config(tmp_path, media_root):
    return HlsConfig(
        transcode_dir=str(tmp_path / "transcode"),
        media_root=str(media_root),
        poll_interval=0.005,
        playlist_wait_timeout=10,
        idle_kill_timeout=None,
    )


@pytest.fixture
def launcher():
    fake = FakeLauncher()
    yield fake
    fake.join()


@pytest.fixture
def service(hls_config, launcher):
    builder = StreamStateBuilder(hls_config, media_root_resolver(hls_config.media_root))
    svc = HlsPlaylistService(hls_config, builder, launcher=launcher)
    yield svc
    svc.shutdown()
