"""
流请求与流状态

StreamRequest 描述客户端请求；StreamState 是生成 FFmpeg 参数所需的
命令行片段，由 StreamStateBuilder 根据请求和配置计算。
"""

import os
import shlex
from dataclasses import dataclass
from typing import Callable, Optional

from werkzeug.security import safe_join

from .config import HlsConfig
from .errors import MediaItemNotFoundError


TICKS_PER_SECOND = 10_000_000


@dataclass(frozen=True)
class StreamRequest:
    """客户端流请求（只读）"""

    item_id: str
    start_time_ticks: int = 0  # 100 纳秒为单位
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    audio_only: bool = False
    segment_container: str = "ts"

    @property
    def start_seconds(self) -> float:
        return self.start_time_ticks / TICKS_PER_SECOND


@dataclass(frozen=True)
class StreamState:
    """FFmpeg 命令行片段

    这些片段由外部计算，参数生成器只做原样拼接。
    """

    request: StreamRequest
    input_path: str
    probe_size_argument: str = ""
    fast_seek_argument: str = ""
    input_argument: str = ""
    slow_seek_argument: str = ""
    map_arguments: str = ""
    video_arguments: str = ""
    audio_arguments: str = ""
    segment_extension: str = ".ts"


def format_seek_time(seconds: float) -> str:
    """将秒数格式化为 FFmpeg 时间 hh:mm:ss.fff

    Args:
        seconds: 时间（秒）

    Returns:
        时间字符串
    """
    millis = int(round(seconds * 1000))
    hours, millis = divmod(millis, 3_600_000)
    minutes, millis = divmod(millis, 60_000)
    secs, millis = divmod(millis, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{millis:03d}"


def media_root_resolver(media_root: str) -> Callable[[str], str]:
    """创建基于媒体根目录的输入路径解析函数

    Args:
        media_root: 媒体根目录

    Returns:
        解析函数，签名为 (item_id: str) -> str
    """
    def resolve(item_id: str) -> str:
        path = safe_join(os.path.abspath(media_root), item_id)
        if path is None or not os.path.isfile(path):
            raise MediaItemNotFoundError(f"Media item not found: {item_id}")
        return path

    return resolve


class StreamStateBuilder:
    """流状态生成器

    根据请求和配置生成 seek、映射和编码参数。
    """

    def __init__(self, config: HlsConfig, resolve_input: Callable[[str], str]):
        """初始化流状态生成器

        Args:
            config: HLS 配置
            resolve_input: 输入路径解析函数，签名为 (item_id: str) -> str
        """
        self.config = config
        self.resolve_input = resolve_input

    def build(self, request: StreamRequest) -> StreamState:
        """生成流状态

        Args:
            request: 流请求

        Returns:
            StreamState 实例
        """
        input_path = self.resolve_input(request.item_id)

        return StreamState(
            request=request,
            input_path=input_path,
            probe_size_argument=self.config.probe_size,
            fast_seek_argument=self._get_fast_seek_argument(request),
            input_argument=shlex.quote(input_path),
            slow_seek_argument="",
            map_arguments=self._get_map_arguments(request),
            video_arguments=self._get_video_arguments(request),
            audio_arguments=self._get_audio_arguments(request),
            segment_extension=self.get_segment_extension(request),
        )

    @staticmethod
    def get_segment_extension(request: StreamRequest) -> str:
        """获取切片扩展名

        视频固定使用 .ts；纯音频按请求的容器选择 .aac 或 .mp3。
        """
        if not request.audio_only:
            return ".ts"
        container = (request.segment_container or "aac").lower().lstrip(".")
        if container == "mp3":
            return ".mp3"
        return ".aac"

    def _get_fast_seek_argument(self, request: StreamRequest) -> str:
        if request.start_time_ticks <= 0:
            return ""
        return f"-ss {format_seek_time(request.start_seconds)}"

    def _get_map_arguments(self, request: StreamRequest) -> str:
        if request.audio_only:
            return "-map 0:a:0"
        return "-map 0:v:0? -map 0:a:0?"

    def _get_video_arguments(self, request: StreamRequest) -> str:
        if request.audio_only:
            return "-vn"

        codec = (request.video_codec or "").lower()
        if codec == "copy":
            return "-codec:v copy -bsf:v h264_mp4toannexb"

        return f"-codec:v {self.config.video_encoder} -preset {self.config.x264_preset} -pix_fmt yuv420p"

    def _get_audio_arguments(self, request: StreamRequest) -> str:
        codec = (request.audio_codec or "").lower()
        if codec == "copy":
            return "-codec:a copy"

        encoder = self.config.audio_encoder
        if self.get_segment_extension(request) == ".mp3" or codec == "mp3":
            encoder = "libmp3lame"

        args = [f"-codec:a {encoder}"]
        if self.config.audio_channels:
            args.append(f"-ac {self.config.audio_channels}")
        if self.config.audio_bitrate:
            args.append(f"-ab {self.config.audio_bitrate}")
        return " ".join(args)
