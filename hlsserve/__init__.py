"""按需转码的 HLS 播放列表服务"""

__version__ = "0.1.0"
