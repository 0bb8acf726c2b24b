"""
HLS 播放列表服务

串联各个组件处理一次播放列表请求：
1. 播放列表不存在时登记任务并启动 FFmpeg，等待至少 3 个切片
2. 已存在时直接读取当前内容
3. 改写路径、注入类型后返回
4. 无论成功失败都释放请求计数
"""

import os
import re
import hashlib
import threading
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple

from .config import HlsConfig, PLAYLIST_MIMETYPE, SEGMENT_EXTENSIONS
from .cleaner import delete_partial_stream_files
from .errors import SegmentNotFoundError
from .ffmpeg import FFmpegLauncher, build_arguments, stop_process
from .job import TranscodeJob, TranscodeJobType
from .playlist import PlaylistReader, PlaylistTransformer
from .state import StreamRequest, StreamState, StreamStateBuilder
from .tracker import TranscodeJobTracker

logger = logging.getLogger(__name__)

# 逻辑切片 ID：32 位任务 ID + 至少 3 位序号
SEGMENT_ID_PATTERN = re.compile(r"^(?P<job_id>[0-9a-f]{32})(?P<index>\d{3,})$")


@dataclass
class PlaylistResponse:
    """播放列表响应"""

    body: str
    mimetype: str = PLAYLIST_MIMETYPE
    headers: Dict[str, str] = field(default_factory=dict)


class HlsPlaylistService:
    """HLS 播放列表服务"""

    def __init__(
        self,
        config: HlsConfig,
        state_builder: StreamStateBuilder,
        tracker: Optional[TranscodeJobTracker] = None,
        launcher: Optional[FFmpegLauncher] = None,
        reader: Optional[PlaylistReader] = None,
        transformer: Optional[PlaylistTransformer] = None,
    ):
        """初始化播放列表服务

        Args:
            config: HLS 配置
            state_builder: 流状态生成器
            tracker: 任务登记表，默认按配置创建并启用空闲回收
            launcher: FFmpeg 启动器
            reader: 播放列表读取器
            transformer: 播放列表改写器
        """
        self.config = config
        self.state_builder = state_builder
        self.tracker = tracker or TranscodeJobTracker(
            on_idle=self._on_job_idle,
            idle_timeout=config.idle_kill_timeout,
        )
        self.launcher = launcher or FFmpegLauncher(config)
        self.reader = reader or PlaylistReader(
            minimum_segments=config.minimum_segments,
            poll_interval=config.poll_interval,
            timeout=config.playlist_wait_timeout,
        )
        self.transformer = transformer or PlaylistTransformer()

    def get_job_id(self, state: StreamState) -> str:
        """根据输入文件和请求参数生成任务 ID（相同参数始终相同）

        Args:
            state: 流状态

        Returns:
            32 位十六进制任务 ID
        """
        request = state.request
        key = "|".join([
            state.input_path,
            str(request.start_time_ticks),
            request.video_codec or "",
            request.audio_codec or "",
            "audio" if request.audio_only else "video",
            state.segment_extension,
        ])
        return hashlib.md5(key.encode("utf-8")).hexdigest()

    def get_output_file_path(self, state: StreamState) -> str:
        return self.config.get_playlist_path(self.get_job_id(state))

    def process_request(
        self,
        request: StreamRequest,
        cancel_event: Optional[threading.Event] = None
    ) -> PlaylistResponse:
        """处理播放列表请求

        Args:
            request: 流请求
            cancel_event: 取消信号，设置后中止等待（仍会释放请求计数）

        Returns:
            PlaylistResponse

        Raises:
            MediaItemNotFoundError: 媒体条目不存在
            TranscodeLaunchError: FFmpeg 启动失败
            PlaylistReadError: 播放列表读取失败、等待超时或被取消
        """
        state = self.state_builder.build(request)
        playlist = self.get_output_file_path(state)
        job_type = TranscodeJobType.HLS
        is_playlist_newly_created = False

        # 播放列表不存在时启动 FFmpeg
        if not os.path.exists(playlist):
            is_playlist_newly_created = True
            if self.tracker.ensure_started(playlist, job_type):
                self._start_transcode(state, playlist, cancel_event)
        else:
            self.tracker.begin_request(playlist, job_type)

        try:
            text = self.reader.read_manifest(
                playlist,
                is_playlist_newly_created,
                cancel_event,
                is_failed=lambda: self.tracker.launch_failed(playlist),
            )
            text = self.transformer.transform(text, os.path.dirname(playlist))
            return PlaylistResponse(body=text)
        finally:
            self.tracker.end_request(playlist, job_type)

    def _start_transcode(
        self,
        state: StreamState,
        playlist: str,
        cancel_event: Optional[threading.Event] = None
    ):
        """启动转码；失败时回滚登记并清理残留文件"""
        arguments = build_arguments(state, playlist)
        try:
            process = self.launcher.start(arguments, playlist, cancel_event)
        except Exception as e:
            logger.error(f"Failed to start transcode for {playlist}: {e}")
            # 先清理文件再回滚，回滚后可能有请求立即重新启动
            delete_partial_stream_files(playlist)
            self.tracker.on_transcode_failed_to_start(playlist, str(e))
            raise

        self.tracker.attach_process(playlist, process)

    def get_segment_path(self, segment_id: str, extension: str) -> Tuple[str, Callable[[], None]]:
        """把逻辑切片映射为物理文件，并为所属播放列表持有一次请求计数

        Args:
            segment_id: 逻辑切片 ID，如 "<job_id>003"
            extension: 切片扩展名，如 ".ts"

        Returns:
            (切片文件路径, 释放函数)；响应发送完毕后必须调用释放函数

        Raises:
            SegmentNotFoundError: 切片 ID 无效或文件不存在
        """
        match = SEGMENT_ID_PATTERN.match(segment_id or "")
        if not match or extension not in SEGMENT_EXTENSIONS:
            raise SegmentNotFoundError(f"Invalid segment: {segment_id}{extension}")

        playlist = self.config.get_playlist_path(match.group("job_id"))
        segment_path = self.config.get_segment_path(segment_id, extension)
        job_type = TranscodeJobType.HLS

        self.tracker.begin_request(playlist, job_type)
        if not os.path.isfile(segment_path):
            self.tracker.end_request(playlist, job_type)
            raise SegmentNotFoundError(f"Segment not found: {segment_id}{extension}")

        released = threading.Event()

        def release():
            if not released.is_set():
                released.set()
                self.tracker.end_request(playlist, job_type)

        return segment_path, release

    def stop_job(self, job_id: str) -> bool:
        """结束转码任务并删除文件

        Args:
            job_id: 任务 ID

        Returns:
            任务是否存在
        """
        playlist = self.config.get_playlist_path(job_id)
        job = self.tracker.remove(playlist)
        if job is None:
            return False
        self._reclaim(job, reason="manual")
        return True

    def shutdown(self):
        """结束所有 FFmpeg 进程"""
        self.tracker.stop()
        for job in self.tracker.jobs():
            if job.process is not None:
                stop_process(job.process)

    def _on_job_idle(self, job: TranscodeJob):
        self._reclaim(job, reason="idle")

    def _reclaim(self, job: TranscodeJob, reason: str):
        if job.process is not None:
            stop_process(job.process)
        result = delete_partial_stream_files(job.path)
        logger.info(
            f"Reclaimed transcode job {job.job_id} ({reason}): "
            f"{len(result.deleted)} deleted, {len(result.failed)} failed"
        )
