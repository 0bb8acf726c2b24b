"""
HLS 播放列表读取与改写

FFmpeg 在转码过程中不断追加 m3u8 文件，这里负责：
- 在写入进行中安全读取播放列表，新任务等待至少 3 个切片
- 把物理切片路径改写为客户端使用的逻辑路径
- 根据是否已结束注入 EVENT / VOD 类型
"""

import os
import time
import threading
import logging
from typing import Callable, Optional

from .config import SEGMENT_FILE_PREFIX, SEGMENT_LOGICAL_ROOT, SEGMENT_EXTENSIONS
from .errors import PlaylistReadError, PlaylistWaitCancelled, PlaylistWaitTimeout, TranscodeLaunchError

logger = logging.getLogger(__name__)

EXTINF_MARKER = "#EXTINF:"
ENDLIST_MARKER = "#EXT-X-ENDLIST"
ALLOW_CACHE_MARKER = "#EXT-X-ALLOW-CACHE"
PLAYLIST_TYPE_TAG = "#EXT-X-PLAYLIST-TYPE:"

_UNSET = object()


def count_occurrences(text: str, pattern: str) -> int:
    """统计不区分大小写、不重叠的出现次数

    Args:
        text: 文本
        pattern: 要查找的字符串

    Returns:
        出现次数
    """
    if not pattern:
        return 0
    return text.lower().count(pattern.lower())


class PlaylistReader:
    """播放列表读取器

    只读打开文件，不会阻止 FFmpeg 继续写入，也不会截断文件。
    """

    def __init__(
        self,
        minimum_segments: int = 3,
        poll_interval: float = 0.025,
        timeout: Optional[float] = None,
    ):
        """初始化播放列表读取器

        Args:
            minimum_segments: 新播放列表至少需要的切片数
            poll_interval: 轮询间隔（秒）
            timeout: 默认等待超时（秒），None 表示无限等待
        """
        self.minimum_segments = minimum_segments
        self.poll_interval = poll_interval
        self.timeout = timeout

    def read_manifest(
        self,
        path: str,
        wait_for_minimum_segments: bool,
        cancel_event: Optional[threading.Event] = None,
        timeout=_UNSET,
        is_failed: Optional[Callable[[], bool]] = None,
    ) -> str:
        """读取播放列表文本

        Args:
            path: 播放列表路径
            wait_for_minimum_segments: 是否等待至少 minimum_segments 个切片
            cancel_event: 取消信号
            timeout: 本次调用的等待超时（秒），不传则使用默认值
            is_failed: 等待期间检查转码是否已启动失败，签名为 () -> bool

        Returns:
            播放列表文本

        Raises:
            PlaylistReadError: 不等待时文件无法读取
            PlaylistWaitTimeout: 等待超时
            PlaylistWaitCancelled: 等待被取消
            TranscodeLaunchError: 等待期间转码启动失败
        """
        if timeout is _UNSET:
            timeout = self.timeout
        deadline = time.monotonic() + timeout if timeout is not None else None

        while True:
            try:
                text = self._read_text(path)
            except FileNotFoundError as e:
                # 等待模式下文件尚未出现视为还没准备好
                if not wait_for_minimum_segments:
                    raise PlaylistReadError(f"Playlist not found: {path}") from e
                text = ""
            except OSError as e:
                raise PlaylistReadError(f"Failed to read playlist {path}: {e}") from e

            if not wait_for_minimum_segments or self._is_ready(text):
                return text

            if is_failed is not None and is_failed():
                raise TranscodeLaunchError(f"Transcode for {path} failed to start")

            if deadline is not None and time.monotonic() >= deadline:
                raise PlaylistWaitTimeout(
                    f"Playlist {path} did not reach {self.minimum_segments} segments within {timeout}s"
                )

            if cancel_event is not None:
                if cancel_event.wait(self.poll_interval):
                    raise PlaylistWaitCancelled(f"Cancelled while waiting for {path}")
            else:
                time.sleep(self.poll_interval)

    def _is_ready(self, text: str) -> bool:
        if count_occurrences(text, EXTINF_MARKER) >= self.minimum_segments:
            return True
        # 媒体较短时 FFmpeg 可能不足 3 个切片就已结束
        return count_occurrences(text, ENDLIST_MARKER) > 0

    def _read_text(self, path: str) -> str:
        with open(path, "rb") as f:
            data = f.read()
        # 写入方可能正写到多字节字符的一半
        return data.decode("utf-8", errors="replace")


class PlaylistTransformer:
    """播放列表改写器

    纯文本变换，相同输入总是得到相同输出。
    """

    def __init__(
        self,
        segment_prefix: str = SEGMENT_FILE_PREFIX,
        logical_root: str = SEGMENT_LOGICAL_ROOT,
        extensions: tuple = SEGMENT_EXTENSIONS,
    ):
        self.segment_prefix = segment_prefix
        self.logical_root = logical_root
        self.extensions = extensions

    def transform(self, raw_text: str, manifest_directory: str) -> str:
        """改写播放列表

        Args:
            raw_text: FFmpeg 写出的播放列表文本
            manifest_directory: 播放列表所在目录

        Returns:
            客户端使用的播放列表文本
        """
        newline = "\r\n" if "\r\n" in raw_text else "\n"

        # 切片路径是物理路径，去掉目录部分变成相对路径
        text = raw_text
        if manifest_directory:
            text = text.replace(manifest_directory.rstrip(os.sep) + os.sep, "")

        lines = text.split(newline)
        lines = [self.rewrite_segment_uri(line) for line in lines]

        playlist_type = self.playlist_type(text)

        # 在 ALLOW-CACHE 之前插入类型；没有该标签时不插入
        result = []
        for line in lines:
            if line.strip().upper().startswith(ALLOW_CACHE_MARKER):
                result.append(PLAYLIST_TYPE_TAG + playlist_type)
            result.append(line)

        return newline.join(result)

    def rewrite_segment_uri(self, line: str) -> str:
        """把物理切片文件名改写为逻辑路径

        segment-<base><NNN>.ts -> segments/<base><NNN>/stream.ts

        Args:
            line: 播放列表中的一行

        Returns:
            改写后的行；标签行和空行原样返回
        """
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            return line

        uri = stripped
        if uri.startswith(self.segment_prefix):
            uri = self.logical_root + "/" + uri[len(self.segment_prefix):]

        for extension in self.extensions:
            if uri.endswith(extension):
                uri = uri[:-len(extension)] + "/stream" + extension
                break

        return uri

    @staticmethod
    def playlist_type(text: str) -> str:
        """判断播放列表类型

        仍在转码时为 EVENT，转码结束（出现 ENDLIST）后为 VOD。

        Args:
            text: 播放列表文本

        Returns:
            "VOD" 或 "EVENT"
        """
        if ENDLIST_MARKER.lower() in text.lower():
            return "VOD"
        return "EVENT"
