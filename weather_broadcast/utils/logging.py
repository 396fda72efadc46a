"""Logging configuration for the weather broadcast generator"""

import logging
from pathlib import Path


def setup_logging(log_file: str = "weather_broadcast.log", level: int = logging.INFO) -> logging.Logger:
    """Set up logging configuration"""
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler()
        ]
    )
    
    # Suppress verbose HTTP client logging from the OpenAI SDK and aiohttp
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    
    return logging.getLogger("weather_broadcast")


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance"""
    return logging.getLogger(name)
