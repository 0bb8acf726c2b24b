"""
HLS 转码异常定义

所有异常都只影响单个请求，不会导致进程退出。
"""


class HlsError(RuntimeError):
    """HLS 服务异常基类。"""


class TranscodeLaunchError(HlsError):
    """FFmpeg 进程无法启动，或在输出播放列表前退出。"""


class PlaylistReadError(HlsError):
    """播放列表文件无法读取（不存在或被锁定）。"""


class PlaylistWaitTimeout(PlaylistReadError):
    """等待最少切片数超时。"""


class PlaylistWaitCancelled(PlaylistReadError):
    """等待被调用方取消。"""


class SegmentNotFoundError(HlsError):
    """请求的切片不存在。"""


class MediaItemNotFoundError(HlsError):
    """媒体条目无法解析为输入文件。"""
