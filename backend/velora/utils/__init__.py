"""
Utilities package.
"""
from .auth import get_current_user_id, decode_token
from .background_task_manager import BackgroundTaskManager

__all__ = ["get_current_user_id", "decode_token", "BackgroundTaskManager"]
