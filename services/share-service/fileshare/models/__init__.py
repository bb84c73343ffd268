"""Database models and schemas"""
from .database import (
    Base, User, Folder, File, Share, SystemSettings, ActivityLog,
    Role, Permission,
)
__all__ = [
    "Base", "User", "Folder", "File", "Share", "SystemSettings", "ActivityLog",
    "Role", "Permission",
]
from .schemas import *
