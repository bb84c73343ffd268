# services/share-service/fileshare/services/__init__.py
"""Business logic services"""
from .auth import auth_service
from .storage import StorageGateway, create_s3_client
from .sharing import sharing_service
from .folders import folder_service
from .files import file_service
from .collaboration import collaboration_service
from .system_settings import system_settings_service
