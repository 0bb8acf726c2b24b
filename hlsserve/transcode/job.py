"""
转码任务数据模型

定义转码任务登记表中的任务记录。
"""

import os
import time
import threading
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Dict, Any
from subprocess import Popen


class TranscodeJobType(Enum):
    """任务类型枚举"""
    HLS = "hls"                  # 分片播放列表
    PROGRESSIVE = "progressive"  # 渐进式输出


@dataclass
class TranscodeJob:
    """转码任务记录

    以输出播放列表的路径作为唯一键，只在登记表的锁内修改。
    """

    path: str
    job_type: Optional[TranscodeJobType] = None
    active_request_count: int = 0

    # 进程信息
    process: Optional[Popen] = None
    kill_timer: Optional[threading.Timer] = None

    # 启动失败标记（仍有请求持有记录时保留）
    launch_failed: bool = False
    error: Optional[str] = None

    # 时间戳
    created_at: float = field(default_factory=time.time)
    last_access_at: float = field(default_factory=time.time)

    @property
    def job_id(self) -> str:
        """任务 ID（播放列表文件名去掉扩展名）"""
        return os.path.splitext(os.path.basename(self.path))[0]

    def update_access(self):
        """更新访问时间"""
        self.last_access_at = time.time()

    def cancel_kill_timer(self):
        """取消待执行的空闲回收定时器"""
        if self.kill_timer is not None:
            self.kill_timer.cancel()
            self.kill_timer = None

    def is_running(self) -> bool:
        """判断 FFmpeg 进程是否仍在运行

        Returns:
            是否运行中
        """
        return self.process is not None and self.process.poll() is None

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典（用于 API 响应）

        Returns:
            字典表示
        """
        result = {
            "id": self.job_id,
            "path": self.path,
            "type": self.job_type.value if self.job_type else None,
            "active_request_count": self.active_request_count,
            "running": self.is_running(),
            "launch_failed": self.launch_failed,
            "created_at": self.created_at,
            "last_access_at": self.last_access_at,
        }
        if self.process is not None:
            result["pid"] = self.process.pid
        if self.error:
            result["error"] = self.error
        return result
