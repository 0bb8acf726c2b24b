"""
FFmpeg 进程管理模块

负责构建分段转码命令并启动 FFmpeg 进程。
"""

import os
import time
import shlex
import threading
import subprocess
import logging
from typing import List, Optional

from .config import HlsConfig, SEGMENT_FILE_PREFIX
from .errors import TranscodeLaunchError, PlaylistWaitCancelled
from .state import StreamState

logger = logging.getLogger(__name__)

SEGMENT_TIME = 10

# 0 秒处强制关键帧，之后每 5 秒一个
KEYFRAME_ARGUMENT = " -force_key_frames expr:if(isnan(prev_forced_t),gte(t,0),gte(t,prev_forced_t+5))"

ARGUMENT_TEMPLATE = (
    "{0} {1} -i {2}{3} -threads 0 {4} {5} {6}{7} "
    "-f ssegment -segment_list_flags +live -segment_time {8} "
    "-segment_list \"{9}\" \"{10}\""
)


def get_segment_base_name(output_path: str) -> str:
    """获取切片基础名（前缀 + 播放列表文件名去扩展名）

    Args:
        output_path: 输出播放列表路径

    Returns:
        切片基础名，如 "segment-<job_id>"
    """
    return SEGMENT_FILE_PREFIX + os.path.splitext(os.path.basename(output_path))[0]


def build_arguments(state: StreamState, output_path: str) -> str:
    """构建分段转码的 FFmpeg 参数字符串

    只做格式化，不执行、不读写文件，也不校验输入。

    Args:
        state: 流状态（seek、映射、编码参数片段）
        output_path: 输出播放列表路径

    Returns:
        FFmpeg 参数字符串（不含可执行文件）
    """
    segment_output_path = os.path.join(
        os.path.dirname(output_path),
        get_segment_base_name(output_path) + "%03d." + state.segment_extension.lstrip(".")
    )

    return ARGUMENT_TEMPLATE.format(
        state.probe_size_argument,
        state.fast_seek_argument,
        state.input_argument,
        state.slow_seek_argument,
        state.map_arguments,
        state.video_arguments,
        state.audio_arguments,
        KEYFRAME_ARGUMENT,
        SEGMENT_TIME,
        output_path,
        segment_output_path,
    ).strip()


def stop_process(process: subprocess.Popen, timeout: float = 5):
    """结束 FFmpeg 进程，超时后强制结束

    Args:
        process: FFmpeg 进程
        timeout: 等待退出的时间（秒）
    """
    if process.poll() is not None:
        return
    try:
        process.terminate()
        try:
            process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
        logger.info(f"Stopped FFmpeg process with PID {process.pid}")
    except OSError as e:
        logger.error(f"Error stopping FFmpeg process: {e}")


class FFmpegLauncher:
    """FFmpeg 进程启动器

    启动进程后轮询播放列表文件是否出现，以此作为启动成功的信号。
    """

    def __init__(self, config: HlsConfig):
        """初始化 FFmpeg 启动器

        Args:
            config: HLS 配置
        """
        self.config = config

    def build_command(self, arguments: str) -> List[str]:
        """构建完整命令

        Args:
            arguments: build_arguments 生成的参数字符串

        Returns:
            FFmpeg 命令列表
        """
        return [
            self.config.ffmpeg_path,
            "-hide_banner",
            "-loglevel", self.config.loglevel,
        ] + shlex.split(arguments)

    def start(
        self,
        arguments: str,
        output_path: str,
        cancel_event: Optional[threading.Event] = None
    ) -> subprocess.Popen:
        """启动 FFmpeg 并等待播放列表文件出现

        Args:
            arguments: FFmpeg 参数字符串
            output_path: 输出播放列表路径
            cancel_event: 取消信号

        Returns:
            subprocess.Popen 对象

        Raises:
            TranscodeLaunchError: 进程无法启动、提前退出或超时
            PlaylistWaitCancelled: 等待被取消
        """
        output_dir = os.path.dirname(output_path)
        os.makedirs(output_dir, exist_ok=True)

        command = self.build_command(arguments)
        log_path = os.path.splitext(output_path)[0] + ".log"

        logger.info(f"Starting FFmpeg: {' '.join(command)}")
        try:
            with open(log_path, "w", encoding="utf-8") as log_file:
                process = subprocess.Popen(
                    command,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    stdin=subprocess.DEVNULL
                )
        except OSError as e:
            raise TranscodeLaunchError(f"Failed to start FFmpeg: {e}") from e

        logger.info(f"Started FFmpeg process with PID {process.pid}")

        try:
            self.wait_for_output(process, output_path, cancel_event)
        except Exception:
            stop_process(process)
            raise

        threading.Thread(
            target=self._monitor_process,
            args=(process, output_path),
            daemon=True,
            name=f"FFmpegMonitor-{process.pid}"
        ).start()

        return process

    def wait_for_output(
        self,
        process: subprocess.Popen,
        output_path: str,
        cancel_event: Optional[threading.Event] = None
    ):
        """轮询等待播放列表文件出现

        Args:
            process: FFmpeg 进程
            output_path: 输出播放列表路径
            cancel_event: 取消信号
        """
        deadline = time.monotonic() + self.config.launch_timeout

        while not os.path.exists(output_path):
            return_code = process.poll()
            if return_code is not None:
                raise TranscodeLaunchError(
                    f"FFmpeg exited with code {return_code} before writing {output_path}"
                )
            if time.monotonic() >= deadline:
                raise TranscodeLaunchError(
                    f"FFmpeg did not create {output_path} within {self.config.launch_timeout}s"
                )
            if cancel_event is not None:
                if cancel_event.wait(self.config.launch_poll_interval):
                    raise PlaylistWaitCancelled(f"Cancelled while waiting for {output_path}")
            else:
                time.sleep(self.config.launch_poll_interval)

    def _monitor_process(self, process: subprocess.Popen, output_path: str):
        return_code = process.wait()
        if return_code == 0:
            logger.info(f"FFmpeg finished {output_path}")
        else:
            logger.warning(f"FFmpeg for {output_path} exited with code {return_code}")
