from hlsserve.transcode import HlsConfig


def test_playlist_wait_is_bounded_by_default():
    assert HlsConfig().playlist_wait_timeout == 60.0
    assert HlsConfig.from_app_config({}).playlist_wait_timeout == 60.0


def test_playlist_wait_timeout_from_app_config():
    config = HlsConfig.from_app_config({"hls": {"playlist_wait_timeout": 5}})
    assert config.playlist_wait_timeout == 5.0

    config = HlsConfig.from_app_config({"hls": {"playlist_wait_timeout": None}})
    assert config.playlist_wait_timeout is None
