"""
转码残留文件清理

转码被放弃或重启后，删除与播放列表同名的所有文件（m3u8、切片、日志）。
"""

import os
import logging
from dataclasses import dataclass, field
from typing import List, Tuple

logger = logging.getLogger(__name__)


@dataclass
class CleanupResult:
    """清理结果"""

    deleted: List[str] = field(default_factory=list)
    failed: List[Tuple[str, OSError]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def delete_partial_stream_files(output_path: str) -> CleanupResult:
    """删除输出目录中文件名包含播放列表基础名的所有文件

    只遍历当前目录，不区分大小写匹配。单个文件删除失败只记录日志，
    不会中断其他文件的删除，也不会抛出异常。

    Args:
        output_path: 输出播放列表路径

    Returns:
        CleanupResult
    """
    result = CleanupResult()
    directory = os.path.dirname(os.path.abspath(output_path))
    name = os.path.splitext(os.path.basename(output_path))[0].lower()

    try:
        filenames = sorted(os.listdir(directory))
    except OSError as e:
        logger.warning(f"Cannot list transcode directory {directory}: {e}")
        return result

    for filename in filenames:
        if name not in filename.lower():
            continue
        file_path = os.path.join(directory, filename)
        if not os.path.isfile(file_path):
            continue
        try:
            logger.info(f"Deleting HLS file {file_path}")
            os.remove(file_path)
            result.deleted.append(file_path)
        except OSError as e:
            logger.error(f"Error deleting HLS file {file_path}: {e}")
            result.failed.append((file_path, e))

    return result
