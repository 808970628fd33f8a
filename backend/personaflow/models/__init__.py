"""数据模型模块"""
from personaflow.models.signal_event import SignalEvent
from personaflow.models.user_exclusion import UserExclusion
from personaflow.models.post import Post, PostCategory

__all__ = [
    "SignalEvent",
    "UserExclusion",
    "Post",
    "PostCategory",
]
