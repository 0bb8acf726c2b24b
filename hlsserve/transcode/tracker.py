"""
转码任务登记表

负责按输出播放列表路径登记转码任务：
- 保证同一路径同时只有一个 FFmpeg 进程
- 记录并发请求数，请求结束时释放
- 最后一个请求结束后安排空闲回收
"""

import os
import threading
import logging
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, Any
from subprocess import Popen

from .job import TranscodeJob, TranscodeJobType

logger = logging.getLogger(__name__)


class TranscodeJobTracker:
    """转码任务登记表

    由宿主服务创建并注入到请求处理器中；所有修改都在同一把锁内完成，
    等待播放列表时不持有这把锁。
    """

    def __init__(
        self,
        on_idle: Optional[Callable[[TranscodeJob], None]] = None,
        idle_timeout: Optional[float] = None,
    ):
        """初始化任务登记表

        Args:
            on_idle: 空闲回收回调，签名为 (job: TranscodeJob) -> None，
                     调用前记录已从登记表移除；为 None 时计数归零即移除记录
            idle_timeout: 计数归零后多久触发回收（秒）
        """
        self._jobs: Dict[str, TranscodeJob] = {}
        self.lock = threading.RLock()
        self.on_idle = on_idle
        self.idle_timeout = idle_timeout

    @staticmethod
    def _normalize(path: str) -> str:
        return os.path.normcase(os.path.abspath(path))

    def ensure_started(self, path: str, job_type: TranscodeJobType = TranscodeJobType.HLS) -> bool:
        """登记任务（如果尚未登记）

        Args:
            path: 输出播放列表路径
            job_type: 任务类型

        Returns:
            True 表示新登记（或上次启动失败），调用方必须启动转码；
            False 表示已有任务，并发计数已加一
        """
        key = self._normalize(path)
        with self.lock:
            job = self._jobs.get(key)
            if job is None:
                self._jobs[key] = TranscodeJob(path=key, job_type=job_type, active_request_count=1)
                logger.debug(f"Registered transcode job {key}")
                return True

            self._acquire(job, job_type)
            if job.launch_failed:
                # 仍有请求持有失败的记录，由本次调用重新启动
                job.launch_failed = False
                job.error = None
                logger.debug(f"Relaunching failed transcode job {key}")
                return True
            return False

    def begin_request(self, path: str, job_type: TranscodeJobType = TranscodeJobType.HLS):
        """复用已存在的播放列表时调用，并发计数加一

        Args:
            path: 输出播放列表路径
            job_type: 任务类型
        """
        key = self._normalize(path)
        with self.lock:
            job = self._jobs.get(key)
            if job is None:
                job = TranscodeJob(path=key)
                self._jobs[key] = job
            self._acquire(job, job_type)

    def end_request(self, path: str, job_type: TranscodeJobType = TranscodeJobType.HLS):
        """请求结束时调用，并发计数减一

        每次成功的 begin_request / ensure_started 都必须对应一次调用，
        包括出错的情况。

        Args:
            path: 输出播放列表路径
            job_type: 任务类型
        """
        key = self._normalize(path)
        with self.lock:
            job = self._jobs.get(key)
            if job is None:
                logger.warning(f"end_request for unknown transcode job {key}")
                return

            if job.active_request_count <= 0:
                logger.warning(f"end_request for idle transcode job {key}")
                return

            job.active_request_count -= 1
            job.update_access()
            if job.active_request_count > 0:
                return

            if self.on_idle is not None and self.idle_timeout is not None and job.job_type == TranscodeJobType.HLS:
                job.cancel_kill_timer()
                timer = threading.Timer(self.idle_timeout, self._on_kill_timer, args=(key, job))
                timer.daemon = True
                job.kill_timer = timer
                timer.start()
            else:
                self._jobs.pop(key, None)

    @contextmanager
    def request(self, path: str, job_type: TranscodeJobType = TranscodeJobType.HLS) -> Iterator[TranscodeJob]:
        """在 with 块内持有一次请求计数，退出时无条件释放

        Args:
            path: 输出播放列表路径
            job_type: 任务类型
        """
        self.begin_request(path, job_type)
        try:
            yield self.get_job(path)
        finally:
            self.end_request(path, job_type)

    def on_transcode_failed_to_start(self, path: str, error: Optional[str] = None):
        """回滚 ensure_started 的登记（FFmpeg 启动失败）

        只释放启动方自己的计数。其他已加入的请求仍持有记录，
        记录被标记为失败，等它们各自 end_request 后才移除。

        Args:
            path: 输出播放列表路径
            error: 失败原因
        """
        key = self._normalize(path)
        with self.lock:
            job = self._jobs.get(key)
            if job is None:
                return
            job.cancel_kill_timer()
            job.process = None
            job.launch_failed = True
            job.error = error
            if job.active_request_count > 0:
                job.active_request_count -= 1
            if job.active_request_count == 0:
                self._jobs.pop(key, None)
            logger.info(f"Rolled back transcode job {key} ({job.active_request_count} requests still waiting)")

    def launch_failed(self, path: str) -> bool:
        """判断任务的最近一次启动是否失败

        Args:
            path: 输出播放列表路径

        Returns:
            记录存在且被标记为启动失败时返回 True
        """
        with self.lock:
            job = self._jobs.get(self._normalize(path))
            return job is not None and job.launch_failed

    def attach_process(self, path: str, process: Popen):
        """记录已启动的 FFmpeg 进程

        Args:
            path: 输出播放列表路径
            process: FFmpeg 进程
        """
        key = self._normalize(path)
        with self.lock:
            job = self._jobs.get(key)
            if job is not None:
                job.process = process

    def get_job(self, path: str) -> Optional[TranscodeJob]:
        with self.lock:
            return self._jobs.get(self._normalize(path))

    def has_active_job(self, path: str) -> bool:
        with self.lock:
            return self._normalize(path) in self._jobs

    def remove(self, path: str) -> Optional[TranscodeJob]:
        """移除任务记录（不结束进程，不删除文件）

        Args:
            path: 输出播放列表路径

        Returns:
            被移除的任务记录，不存在返回 None
        """
        with self.lock:
            job = self._jobs.pop(self._normalize(path), None)
            if job is not None:
                job.cancel_kill_timer()
            return job

    def jobs(self) -> List[TranscodeJob]:
        with self.lock:
            return list(self._jobs.values())

    def get_status_summary(self) -> Dict[str, Any]:
        """获取状态摘要

        Returns:
            状态摘要字典
        """
        with self.lock:
            return {
                "total_jobs": len(self._jobs),
                "active_requests": sum(job.active_request_count for job in self._jobs.values()),
                "running_jobs": sum(1 for job in self._jobs.values() if job.is_running()),
            }

    def stop(self):
        """取消所有待执行的回收定时器"""
        with self.lock:
            for job in self._jobs.values():
                job.cancel_kill_timer()

    def _acquire(self, job: TranscodeJob, job_type: TranscodeJobType):
        job.active_request_count += 1
        if job.job_type is None:
            job.job_type = job_type
        job.cancel_kill_timer()
        job.update_access()

    def _on_kill_timer(self, key: str, job: TranscodeJob):
        """空闲回收定时器回调（在定时器线程中执行）"""
        with self.lock:
            # 定时器可能已被新的请求取消或替换
            if self._jobs.get(key) is not job or job.kill_timer is not threading.current_thread():
                return
            if job.active_request_count > 0:
                return
            job.kill_timer = None
            self._jobs.pop(key, None)

        logger.info(f"Transcode job {key} is idle, reclaiming")
        try:
            self.on_idle(job)
        except Exception as e:
            logger.error(f"Error reclaiming idle transcode job {key}: {e}")
