"""
Privacy-protected logging configuration
Filters tokens and app secrets from logs before they reach any sink
"""

import re
import os
from loguru import logger
import sys

from config.settings import settings


class PrivacyLogFilter:
    """Filter to remove sensitive data from log messages"""

    SENSITIVE_PATTERNS = [
        # JSON-ish token fields
        (r'"access_token":\s*"[^"]*"', '"access_token": "[TOKEN_FILTERED]"'),
        (r"'access_token':\s*'[^']*'", "'access_token': '[TOKEN_FILTERED]'"),
        (r'"page_access_token":\s*"[^"]*"', '"page_access_token": "[TOKEN_FILTERED]"'),
        (r'"client_secret":\s*"[^"]*"', '"client_secret": "[SECRET_FILTERED]"'),
        (r'"app_secret":\s*"[^"]*"', '"app_secret": "[SECRET_FILTERED]"'),
        (r'"code":\s*"[^"]*"', '"code": "[CODE_FILTERED]"'),

        # Query string parameters used by the Graph API
        (r'\b(access_token|fb_exchange_token|input_token|client_secret|code)=[^&\s"\']+', r'\1=[FILTERED]'),

        # Authorization headers
        (r'Bearer\s+[A-Za-z0-9._\-|]+', 'Bearer [TOKEN_FILTERED]'),

        # App access tokens (app_id|app_secret)
        (r'\b\d{6,}\|[A-Za-z0-9_\-]{16,}\b', '[APP_TOKEN_FILTERED]'),
    ]

    @classmethod
    def filter_sensitive_data(cls, message: str) -> str:
        """Filter sensitive data from a log message"""
        filtered_message = message

        for pattern, replacement in cls.SENSITIVE_PATTERNS:
            filtered_message = re.sub(pattern, replacement, filtered_message, flags=re.IGNORECASE)

        return filtered_message


def privacy_log_filter(record):
    """Loguru filter function that removes sensitive data"""
    if 'message' in record:
        record['message'] = PrivacyLogFilter.filter_sensitive_data(record['message'])
    return True


# Remove default logger
logger.remove()

# Add console logger with privacy filter
logger.add(
    sys.stderr,
    level=settings.LOG_LEVEL,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    filter=privacy_log_filter,
    colorize=True
)

if settings.LOG_DIR:
    # Add file logger with privacy filter and rotation
    logger.add(
        os.path.join(settings.LOG_DIR, "channel_service.log"),
        level=settings.LOG_LEVEL,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
        rotation="1 week",
        retention="1 month",
        compression="zip",
        filter=privacy_log_filter
    )

    # Add error-only file logger
    logger.add(
        os.path.join(settings.LOG_DIR, "channel_service_errors.log"),
        level="ERROR",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
        rotation="1 week",
        retention="2 months",
        compression="zip",
        filter=privacy_log_filter
    )

logger.info("🔒 Privacy-protected logging initialized - tokens and secrets will be filtered")
