#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import os
import sys
import json
import copy
import atexit
import logging
from logging.handlers import TimedRotatingFileHandler

# Add current directory to Python path to ensure modules can be imported
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from flask import Flask, jsonify
from flask_cors import CORS

from hlsserve.transcode import (
    HlsPlaylistService,
    StreamStateBuilder,
    get_hls_config,
    media_root_resolver,
)
from hlsserve.transcode.api import register_routes

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

# 配置较少日志输出的模块
for module in ['werkzeug', 'urllib3']:
    logging.getLogger(module).setLevel(logging.WARNING)

if not os.path.exists('logs'):
    os.makedirs('logs')

# 添加按日期滚动的文件处理器
file_handler = TimedRotatingFileHandler(
    'logs/webserver.log',
    when='midnight',
    interval=1,
    backupCount=3  # 保留3天日志
)
file_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(name)s - %(message)s'))
file_handler.setLevel(logging.INFO)
logging.getLogger().addHandler(file_handler)

# Configuration file path
CONFIG_FILE = os.environ.get("HLS_CONFIG_FILE", "config/config.json")

DEFAULT_CONFIG = {
    "host": "0.0.0.0",
    "port": 8096,
    "hls": {
        "transcode_dir": "data/transcode",
        "media_root": "media",
        "ffmpeg_path": "ffmpeg",
        "loglevel": "warning",
        "playlist_wait_timeout": 60,
        "launch_timeout": 30,
        "idle_kill_timeout": 60,
        "video_encoder": "libx264",
        "x264_preset": "superfast",
        "audio_encoder": "aac",
        "audio_bitrate": "128k",
        "audio_channels": 2
    }
}


def load_config():
    """Load configuration file"""
    config = copy.deepcopy(DEFAULT_CONFIG)
    try:
        if os.path.exists(CONFIG_FILE):
            with open(CONFIG_FILE, 'r', encoding='utf-8') as f:
                loaded_config = json.load(f)
                hls_section = loaded_config.pop("hls", None) or {}
                config.update(loaded_config)
                config["hls"].update(hls_section)
                logging.info(f"Loaded configuration file: {CONFIG_FILE}")
        else:
            # Create config directory if it doesn't exist
            os.makedirs(os.path.dirname(CONFIG_FILE), exist_ok=True)
            with open(CONFIG_FILE, 'w', encoding='utf-8') as f:
                json.dump(config, f, ensure_ascii=False, indent=2)
                logging.info(f"Created default configuration file: {CONFIG_FILE}")
    except (OSError, ValueError) as e:
        logging.error(f"Failed to load configuration file: {str(e)}")

    return config


CURRENT_CONFIG = load_config()

HLS_CONFIG = get_hls_config(CURRENT_CONFIG)
os.makedirs(HLS_CONFIG.transcode_dir, exist_ok=True)
logging.info(f"Using transcode directory: {os.path.abspath(HLS_CONFIG.transcode_dir)}")

# Initialize Flask application
app = Flask(__name__)
CORS(app)  # Enable CORS

hls_service = HlsPlaylistService(
    HLS_CONFIG,
    StreamStateBuilder(HLS_CONFIG, media_root_resolver(HLS_CONFIG.media_root)),
)
register_routes(app, hls_service)
atexit.register(hls_service.shutdown)


@app.route('/health', methods=['GET'])
def health():
    """Health check"""
    return jsonify({"status": "ok", "hls": hls_service.tracker.get_status_summary()})


if __name__ == '__main__':
    host = os.environ.get("HOST", CURRENT_CONFIG.get("host", "0.0.0.0"))
    port = int(os.environ.get("PORT", CURRENT_CONFIG.get("port", 8096)))
    app.run(host=host, port=port, threaded=True)
