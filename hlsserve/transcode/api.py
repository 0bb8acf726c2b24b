"""
HLS API 端点

播放列表中的切片地址是相对路径，客户端会相对于播放列表地址请求
segments/<segment_id>/stream.<ext>。
"""

import logging
from flask import jsonify, request, send_file, Response

from .config import PLAYLIST_MIMETYPE
from .errors import (
    MediaItemNotFoundError,
    PlaylistReadError,
    PlaylistWaitCancelled,
    PlaylistWaitTimeout,
    SegmentNotFoundError,
    TranscodeLaunchError,
)
from .state import StreamRequest

logger = logging.getLogger(__name__)

SEGMENT_MIMETYPES = {
    ".ts": "video/mp2t",
    ".aac": "audio/aac",
    ".mp3": "audio/mpeg",
}


def _parse_stream_request(item_id: str, audio_only: bool) -> StreamRequest:
    """从查询参数解析流请求"""
    try:
        start_time_ticks = int(request.args.get("StartTimeTicks", 0) or 0)
    except ValueError:
        start_time_ticks = 0

    return StreamRequest(
        item_id=item_id,
        start_time_ticks=max(0, start_time_ticks),
        video_codec=request.args.get("VideoCodec"),
        audio_codec=request.args.get("AudioCodec"),
        audio_only=audio_only,
        segment_container=request.args.get("SegmentContainer", "aac" if audio_only else "ts"),
    )


def register_routes(app, service):
    """注册 HLS API 路由

    Args:
        app: Flask 应用实例
        service: HlsPlaylistService 实例
    """

    app.extensions["hls_service"] = service

    def playlist_response(item_id: str, audio_only: bool):
        stream_request = _parse_stream_request(item_id, audio_only)

        try:
            result = service.process_request(stream_request)
        except MediaItemNotFoundError as e:
            return jsonify({"error": str(e)}), 404
        except TranscodeLaunchError as e:
            logger.error(f"Transcode failed for {item_id}: {e}")
            return jsonify({"error": str(e)}), 500
        except PlaylistWaitTimeout as e:
            logger.warning(str(e))
            return jsonify({"error": str(e)}), 504
        except PlaylistWaitCancelled as e:
            return jsonify({"error": str(e)}), 503
        except PlaylistReadError as e:
            logger.warning(str(e))
            return jsonify({"error": str(e)}), 404

        response = Response(result.body, mimetype=result.mimetype or PLAYLIST_MIMETYPE)
        for name, value in result.headers.items():
            response.headers[name] = value
        return response

    def segment_response(segment_id: str, extension: str):
        try:
            path, release = service.get_segment_path(segment_id, extension)
        except SegmentNotFoundError as e:
            return jsonify({"error": str(e)}), 404

        try:
            response = send_file(path, mimetype=SEGMENT_MIMETYPES.get(extension, "application/octet-stream"))
        except Exception:
            release()
            raise
        response.call_on_close(release)
        return response

    @app.route('/videos/<item_id>/stream.m3u8', methods=['GET'])
    def hls_video_playlist(item_id):
        """获取视频 m3u8 播放列表

        Args:
            item_id: 媒体条目 ID

        Returns:
            m3u8 播放列表内容
        """
        return playlist_response(item_id, audio_only=False)

    @app.route('/audio/<item_id>/stream.m3u8', methods=['GET'])
    def hls_audio_playlist(item_id):
        """获取纯音频 m3u8 播放列表"""
        return playlist_response(item_id, audio_only=True)

    @app.route('/videos/<item_id>/segments/<segment_id>/stream.<ext>', methods=['GET'])
    @app.route('/audio/<item_id>/segments/<segment_id>/stream.<ext>', methods=['GET'])
    def hls_segment(item_id, segment_id, ext):
        """获取切片文件

        Args:
            item_id: 媒体条目 ID（仅用于构成相对地址）
            segment_id: 逻辑切片 ID
            ext: 切片扩展名

        Returns:
            切片文件内容
        """
        return segment_response(segment_id, "." + ext.lower())

    @app.route('/hls/jobs', methods=['GET'])
    def hls_jobs():
        """获取所有转码任务"""
        return jsonify({
            "success": True,
            "jobs": [job.to_dict() for job in service.tracker.jobs()],
            "summary": service.tracker.get_status_summary(),
        })

    @app.route('/hls/jobs/<job_id>', methods=['DELETE'])
    def hls_stop_job(job_id):
        """结束转码任务并删除文件

        Args:
            job_id: 任务 ID
        """
        if service.stop_job(job_id):
            return jsonify({
                "success": True,
                "message": "Job stopped",
                "summary": service.tracker.get_status_summary(),
            })

        return jsonify({"error": "Job not found"}), 404
