import pytest
from flask import Flask

from hlsserve.transcode.api import register_routes
from hlsserve.transcode import StreamRequest


@pytest.fixture
def client(service):
    app = Flask(__name__)
    register_routes(app, service)
    app.config["TESTING"] = True
    return app.test_client()


def test_video_playlist(client, service):
    response = client.get("/videos/movie.mkv/stream.m3u8")

    assert response.status_code == 200
    assert response.mimetype == "application/vnd.apple.mpegurl"
    body = response.get_data(as_text=True)
    assert "#EXT-X-PLAYLIST-TYPE:EVENT" in body
    assert "segments/" in body


def test_audio_playlist_uses_requested_container(hls_config, client, launcher):
    launcher.extension = ".mp3"

    response = client.get("/audio/song.flac/stream.m3u8?SegmentContainer=mp3")

    assert response.status_code == 200
    assert "/stream.mp3" in response.get_data(as_text=True)
    assert launcher.calls[0][0].endswith("%03d.mp3\"")


def test_start_time_is_passed_to_ffmpeg(client, launcher):
    client.get("/videos/movie.mkv/stream.m3u8?StartTimeTicks=300000000")

    assert "-ss 00:00:30.000" in launcher.calls[0][0]


def test_unknown_item_is_404(client):
    response = client.get("/videos/missing.mkv/stream.m3u8")

    assert response.status_code == 404
    assert "error" in response.get_json()


def test_segment_is_served(client, service, launcher):
    client.get("/videos/movie.mkv/stream.m3u8")
    launcher.join()
    job_id = service.get_job_id(service.state_builder.build(StreamRequest(item_id="movie.mkv")))

    response = client.get(f"/videos/movie.mkv/segments/{job_id}000/stream.ts")

    assert response.status_code == 200
    assert response.mimetype == "video/mp2t"
    assert response.data.startswith(b"\x47")
    response.close()


def test_missing_segment_is_404(client):
    response = client.get("/videos/movie.mkv/segments/" + "0" * 32 + "000/stream.ts")

    assert response.status_code == 404


def test_jobs_listing_and_stop(client, service, launcher):
    service.tracker.begin_request(service.config.get_playlist_path("a" * 32))

    listing = client.get("/hls/jobs").get_json()

    assert listing["success"] is True
    assert listing["jobs"][0]["id"] == "a" * 32
    assert listing["summary"]["active_requests"] == 1

    assert client.delete("/hls/jobs/" + "a" * 32).status_code == 200
    assert client.delete("/hls/jobs/" + "a" * 32).status_code == 404


def test_short_finished_media_is_served_promptly(client, launcher):
    launcher.segments = 2
    launcher.finish = True

    response = client.get("/videos/movie.mkv/stream.m3u8")

    assert response.status_code == 200
    assert "#EXT-X-PLAYLIST-TYPE:VOD" in response.get_data(as_text=True)


def test_stalled_transcode_times_out(client, service, launcher):
    launcher.segments = 2
    service.reader.timeout = 0.2

    response = client.get("/videos/movie.mkv/stream.m3u8")

    assert response.status_code == 504
    assert "error" in response.get_json()
    assert service.tracker.jobs() == []
