"""
HLS 分段转码服务模块

按需启动 FFmpeg 分段转码，在写入过程中提供 m3u8 播放列表。

核心特性：
- 同一输出路径同时只有一个 FFmpeg 进程
- 新播放列表至少包含 3 个切片才返回给客户端
- 物理切片路径改写为逻辑路径，根据 ENDLIST 注入 EVENT / VOD
- 最后一个请求结束后回收进程和文件
"""

from .config import HlsConfig, get_hls_config
from .errors import (
    HlsError,
    TranscodeLaunchError,
    PlaylistReadError,
    PlaylistWaitTimeout,
    PlaylistWaitCancelled,
    SegmentNotFoundError,
    MediaItemNotFoundError,
)
from .job import TranscodeJob, TranscodeJobType
from .tracker import TranscodeJobTracker
from .state import StreamRequest, StreamState, StreamStateBuilder, media_root_resolver
from .ffmpeg import FFmpegLauncher, build_arguments
from .playlist import PlaylistReader, PlaylistTransformer
from .cleaner import CleanupResult, delete_partial_stream_files
from .service import HlsPlaylistService, PlaylistResponse

__all__ = [
    'HlsConfig',
    'get_hls_config',
    'HlsError',
    'TranscodeLaunchError',
    'PlaylistReadError',
    'PlaylistWaitTimeout',
    'PlaylistWaitCancelled',
    'SegmentNotFoundError',
    'MediaItemNotFoundError',
    'TranscodeJob',
    'TranscodeJobType',
    'TranscodeJobTracker',
    'StreamRequest',
    'StreamState',
    'StreamStateBuilder',
    'media_root_resolver',
    'FFmpegLauncher',
    'build_arguments',
    'PlaylistReader',
    'PlaylistTransformer',
    'CleanupResult',
    'delete_partial_stream_files',
    'HlsPlaylistService',
    'PlaylistResponse',
]
