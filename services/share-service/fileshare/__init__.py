# services/share-service/fileshare/__init__.py
"""FileMan storage & sharing service"""
def __getattr__(name):
    if name == "__version__":
        from .config import settings
        return settings.VERSION
    raise AttributeError(name)
