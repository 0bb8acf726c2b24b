"""
HLS 转码配置模块

定义转码相关的配置参数和默认值。
"""

import os
from typing import Optional
from dataclasses import dataclass


# 切片文件前缀（物理文件名），以及客户端看到的逻辑目录
SEGMENT_FILE_PREFIX = "segment-"
SEGMENT_LOGICAL_ROOT = "segments"

# 支持的切片扩展名，每种扩展名对应一个固定的逻辑文件名 stream.<ext>
SEGMENT_EXTENSIONS = (".ts", ".aac", ".mp3")

PLAYLIST_MIMETYPE = "application/vnd.apple.mpegurl"


@dataclass
class HlsConfig:
    """HLS 转码配置

    从全局配置中读取 hls 段，提供默认值。
    """

    # 基础配置
    transcode_dir: str = "data/transcode"
    media_root: str = "media"
    ffmpeg_path: str = "ffmpeg"
    loglevel: str = "warning"

    # 播放列表等待
    minimum_segments: int = 3  # 新播放列表至少包含 3 个切片才返回
    poll_interval: float = 0.025  # 轮询间隔（秒）
    playlist_wait_timeout: Optional[float] = 60.0  # None 表示无限等待

    # 进程启动
    launch_timeout: float = 30.0  # 等待播放列表文件出现的时间（秒）
    launch_poll_interval: float = 0.1

    # 空闲回收：最后一个请求结束后多久结束 FFmpeg 并删除文件
    idle_kill_timeout: Optional[float] = 60.0

    # 编码器配置
    video_encoder: str = "libx264"
    x264_preset: str = "superfast"
    audio_encoder: str = "aac"
    audio_bitrate: Optional[str] = "128k"
    audio_channels: Optional[int] = 2
    probe_size: str = ""  # 如 "-probesize 1G -analyzeduration 200M"

    @classmethod
    def from_app_config(cls, app_config: dict) -> 'HlsConfig':
        """从应用配置创建 HlsConfig

        Args:
            app_config: 全局配置字典

        Returns:
            HlsConfig 实例
        """
        hls_config = app_config.get("hls", {}) or {}

        config = cls()

        if "transcode_dir" in hls_config:
            config.transcode_dir = hls_config["transcode_dir"]
        if "media_root" in hls_config:
            config.media_root = hls_config["media_root"]
        if "ffmpeg_path" in hls_config:
            config.ffmpeg_path = hls_config["ffmpeg_path"] or "ffmpeg"
        if "loglevel" in hls_config:
            config.loglevel = hls_config["loglevel"]

        if "minimum_segments" in hls_config:
            config.minimum_segments = int(hls_config["minimum_segments"] or 3)
        if "poll_interval" in hls_config:
            config.poll_interval = float(hls_config["poll_interval"] or 0.025)
        if "playlist_wait_timeout" in hls_config:
            value = hls_config["playlist_wait_timeout"]
            config.playlist_wait_timeout = float(value) if value else None

        if "launch_timeout" in hls_config:
            config.launch_timeout = float(hls_config["launch_timeout"] or 30)
        if "launch_poll_interval" in hls_config:
            config.launch_poll_interval = float(hls_config["launch_poll_interval"] or 0.1)
        if "idle_kill_timeout" in hls_config:
            value = hls_config["idle_kill_timeout"]
            config.idle_kill_timeout = float(value) if value else None

        if "video_encoder" in hls_config:
            config.video_encoder = hls_config["video_encoder"]
        if "x264_preset" in hls_config:
            config.x264_preset = hls_config["x264_preset"]
        if "audio_encoder" in hls_config:
            config.audio_encoder = hls_config["audio_encoder"]
        if "audio_bitrate" in hls_config:
            config.audio_bitrate = hls_config["audio_bitrate"]
        if "audio_channels" in hls_config:
            config.audio_channels = int(hls_config["audio_channels"]) if hls_config["audio_channels"] else None
        if "probe_size" in hls_config:
            config.probe_size = hls_config["probe_size"] or ""

        return config

    def get_playlist_path(self, job_id: str) -> str:
        """获取 FFmpeg 输出的 m3u8 文件路径

        Args:
            job_id: 转码任务 ID（请求参数的哈希）

        Returns:
            m3u8 文件的绝对路径
        """
        return os.path.abspath(os.path.join(self.transcode_dir, f"{job_id}.m3u8"))

    def get_segment_path(self, segment_id: str, extension: str) -> str:
        """获取切片文件路径

        Args:
            segment_id: 逻辑切片 ID，如 "<job_id>003"
            extension: 切片扩展名，如 ".ts"

        Returns:
            切片文件的绝对路径
        """
        return os.path.abspath(
            os.path.join(self.transcode_dir, f"{SEGMENT_FILE_PREFIX}{segment_id}{extension}")
        )


def get_hls_config(app_config: dict) -> HlsConfig:
    """获取 HLS 配置的便捷函数

    Args:
        app_config: 全局配置字典

    Returns:
        HlsConfig 实例
    """
    return HlsConfig.from_app_config(app_config)
