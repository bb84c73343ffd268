# services/share-service/fileshare/services/collaboration.py
"""OnlyOffice document editing.

The document server is an external actor: it opens documents through the
launch config issued here and reports back through the callback. Callbacks
may never arrive, arrive twice or arrive out of order, so each one is
handled on its own, keyed by file id, with no in-process session state.

Two editor sessions saving the same file are not serialized; the last
successful save wins.
"""
import asyncio
import enum
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import aiohttp
from jose import jwt, JWTError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database import get_redis
from ..exceptions import FeatureDisabled, Forbidden, NotFound, Unauthorized, UnsupportedMediaType
from ..models.database import File, Permission, User
from ..monitoring.metrics import editor_callbacks
from .storage import StorageError, StorageGateway
from .sharing import sharing_service
from .system_settings import system_settings_service

logger = logging.getLogger(__name__)

DOWNLOAD_TOKEN_PURPOSE = "onlyoffice-download"

# Extension -> (documentType, fileType)
DOCUMENT_TYPES = {
    # Word processing
    ".doc": ("word", "doc"),
    ".docx": ("word", "docx"),
    ".odt": ("word", "odt"),
    ".rtf": ("word", "rtf"),
    ".txt": ("word", "txt"),
    # Spreadsheets
    ".xls": ("cell", "xls"),
    ".xlsx": ("cell", "xlsx"),
    ".ods": ("cell", "ods"),
    ".csv": ("cell", "csv"),
    # Presentations
    ".ppt": ("slide", "ppt"),
    ".pptx": ("slide", "pptx"),
    ".odp": ("slide", "odp"),
    # PDF
    ".pdf": ("word", "pdf"),
}


class CallbackStatus(enum.IntEnum):
    EDITING = 1
    READY_FOR_SAVE = 2
    SAVE_ERROR = 3
    CLOSED_NO_CHANGES = 4
    SAVE_IN_PROGRESS = 6
    FORCE_SAVE = 7


class SessionState(str, enum.Enum):
    IDLE = "idle"
    EDITING = "editing"
    SAVE_REQUESTED = "save_requested"
    SAVE_FAILED = "save_failed"


SAVE_STATUSES = {CallbackStatus.READY_FOR_SAVE, CallbackStatus.FORCE_SAVE}

CALLBACK_OK = {"error": 0}
CALLBACK_FAILED = {"error": 1}


class EditorSaveError(Exception):
    pass


@dataclass
class CallbackOutcome:
    state: SessionState
    saved: bool = False

    @property
    def response(self) -> Dict[str, int]:
        return CALLBACK_FAILED if self.state == SessionState.SAVE_FAILED else CALLBACK_OK


def document_info(filename: str):
    """``(documentType, fileType)`` for a filename, or None when the editor can't open it"""
    return DOCUMENT_TYPES.get(os.path.splitext(filename or "")[1].lower())


def document_key(file_obj: File) -> str:
    """Editor cache key; changes whenever the file is saved"""
    modified = file_obj.updated_at or file_obj.created_at
    return f"{file_obj.id}_{int(modified.timestamp() * 1000)}"


def create_download_token(file_id: str, expires_minutes: int = None) -> str:
    """Short-lived token that lets the document server fetch exactly one file"""
    expire = datetime.utcnow() + timedelta(
        minutes=expires_minutes or settings.EDITOR_DOWNLOAD_TOKEN_MINUTES
    )
    payload = {"fileId": file_id, "purpose": DOWNLOAD_TOKEN_PURPOSE, "exp": expire}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def verify_download_token(token: Optional[str], file_id: str) -> Dict[str, Any]:
    if not token:
        raise Unauthorized("Token is required")
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise Unauthorized("Invalid or expired token")
    if payload.get("fileId") != file_id or payload.get("purpose") != DOWNLOAD_TOKEN_PURPOSE:
        raise Forbidden("Invalid token for this file")
    return payload


def sign_editor_payload(payload: Dict[str, Any], secret: str) -> str:
    return jwt.encode(payload, secret, algorithm="HS256")


def verify_editor_token(token: Optional[str], secret: Optional[str]) -> Optional[Dict[str, Any]]:
    """Claims of a token signed by the document server, or None"""
    if not token or not secret:
        return None
    try:
        return jwt.decode(token, secret, algorithms=["HS256"], options={"verify_aud": False})
    except JWTError:
        return None


def next_state(status: Optional[int]) -> SessionState:
    """State the session moves to when a callback with ``status`` arrives (before any save)"""
    try:
        status = CallbackStatus(status)
    except (ValueError, TypeError):
        return SessionState.IDLE
    if status in (CallbackStatus.EDITING, CallbackStatus.SAVE_IN_PROGRESS):
        return SessionState.EDITING
    if status in SAVE_STATUSES:
        return SessionState.SAVE_REQUESTED
    return SessionState.IDLE


class CollaborationService:

    async def fetch_document(self, url: str) -> bytes:
        """Download the edited document from the URL supplied by the document server"""
        timeout = aiohttp.ClientTimeout(total=settings.EDITOR_FETCH_TIMEOUT)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        raise EditorSaveError(f"Document server returned {response.status}")
                    return await response.read()
        except asyncio.TimeoutError as e:
            raise EditorSaveError("Timed out downloading document") from e
        except aiohttp.ClientError as e:
            raise EditorSaveError(f"Failed to download document: {e}") from e

    async def get_editor_config(self, db: AsyncSession, storage: StorageGateway,
                                file_id: str, user: User) -> Dict[str, Any]:
        system = await system_settings_service.get(db)
        if not system.onlyoffice_enabled or not system.onlyoffice_url:
            raise FeatureDisabled("OnlyOffice is not configured")

        grant = await sharing_service.resolve_access(db, "file", file_id, user, Permission.VIEW)
        file_obj = grant.resource

        info = document_info(file_obj.original_name)
        if info is None:
            raise UnsupportedMediaType("File type not supported by OnlyOffice")
        doc_type, file_type = info

        can_edit = bool(system.onlyoffice_edit_enabled) and grant.allows(Permission.EDIT)
        co_editing = bool(system.onlyoffice_coedit)
        base_url = settings.PUBLIC_URL.rstrip("/")

        document_url = await storage.presign(file_obj.storage_key)
        callback_url = f"{base_url}/api/v1/onlyoffice/callback?fileId={file_obj.id}"
        download_url = (
            f"{base_url}/api/v1/onlyoffice/download/{file_obj.id}"
            f"?token={create_download_token(file_obj.id)}"
        )

        config: Dict[str, Any] = {
            "document": {
                "fileType": file_type,
                "key": document_key(file_obj),
                "title": file_obj.original_name,
                "url": document_url,
                "permissions": {
                    "comment": can_edit,
                    "download": grant.allows(Permission.DOWNLOAD),
                    "edit": can_edit,
                    "print": True,
                    "review": can_edit,
                    "copy": True,
                },
            },
            "documentType": doc_type,
            "editorConfig": {
                "lang": "en",
                "mode": "edit" if can_edit else "view",
                "user": {
                    "id": user.id,
                    "name": user.name or user.username or user.email,
                },
                "customization": {
                    "autosave": True,
                    "chat": co_editing,
                    "comments": can_edit,
                    "forcesave": True,
                    "feedback": False,
                    "help": False,
                    "plugins": False,
                },
            },
            "downloadUrl": download_url,
            "height": "100%",
            "width": "100%",
            "type": "desktop",
        }
        if can_edit:
            config["editorConfig"]["callbackUrl"] = callback_url
        if co_editing:
            config["editorConfig"]["coEditing"] = {"mode": "fast", "change": True}

        secret = system_settings_service.editor_secret(system)
        if secret:
            config["token"] = sign_editor_payload(config, secret)

        return {
            "config": config,
            "onlyoffice_url": system.onlyoffice_url,
            "document_server_url": f"{system.onlyoffice_url}/web-apps/apps/api/documents/api.js",
        }

    async def editor_download_url(self, db: AsyncSession, storage: StorageGateway,
                                  file_id: str, token: Optional[str]) -> str:
        verify_download_token(token, file_id)
        result = await db.execute(select(File).filter(File.id == file_id))
        file_obj = result.scalar_one_or_none()
        if file_obj is None:
            raise NotFound("File not found")
        return await storage.presign(file_obj.storage_key)

    def _callback_data(self, body: Dict[str, Any], claims: Dict[str, Any]) -> Dict[str, Any]:
        """Signed claims override the unsigned body"""
        if "status" in claims:
            return claims
        if isinstance(claims.get("payload"), dict):
            return claims["payload"]
        return body

    async def handle_callback(self, db: AsyncSession, storage: StorageGateway,
                              file_id: Optional[str], body: Dict[str, Any],
                              header_token: Optional[str] = None) -> Dict[str, int]:
        """Apply one document-server callback and answer with ``{"error": 0|1}``"""
        try:
            outcome = await self._process_callback(db, storage, file_id, body, header_token)
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("Metadata lookup failed for editor callback on file %s", file_id)
            return CALLBACK_FAILED
        except Exception:
            # The document server only understands {"error": 0|1}
            await db.rollback()
            logger.exception("Editor callback for file %s failed", file_id)
            return CALLBACK_FAILED
        return outcome.response

    async def _process_callback(self, db: AsyncSession, storage: StorageGateway,
                                file_id: Optional[str], body: Dict[str, Any],
                                header_token: Optional[str]) -> CallbackOutcome:
        raw_status = body.get("status")
        if not file_id:
            logger.error("Editor callback without fileId")
            return self._record(raw_status, CallbackOutcome(SessionState.SAVE_FAILED))

        system = await system_settings_service.get(db)
        if not system.onlyoffice_enabled:
            logger.error("Editor callback for %s rejected: integration disabled", file_id)
            return self._record(raw_status, CallbackOutcome(SessionState.SAVE_FAILED))

        # Nothing is applied until the signature checks out
        claims = verify_editor_token(
            body.get("token") or header_token, system_settings_service.editor_secret(system)
        )
        if claims is None:
            logger.error("Editor callback for %s rejected: signature verification failed", file_id)
            return self._record(raw_status, CallbackOutcome(SessionState.SAVE_FAILED))

        data = self._callback_data(body, claims)
        status = data.get("status")

        result = await db.execute(select(File).filter(File.id == file_id))
        file_obj = result.scalar_one_or_none()
        if file_obj is None:
            logger.error("Editor callback for unknown file %s", file_id)
            return self._record(status, CallbackOutcome(SessionState.SAVE_FAILED))

        state = next_state(status)
        if state == SessionState.EDITING:
            logger.info("File %s is being edited by %s", file_id, data.get("users"))
            return self._record(status, CallbackOutcome(SessionState.EDITING))
        if state == SessionState.IDLE:
            if status == CallbackStatus.SAVE_ERROR:
                logger.error("Document server reported a save error for file %s", file_id)
            elif status == CallbackStatus.CLOSED_NO_CHANGES:
                logger.info("File %s closed without changes", file_id)
            else:
                logger.warning("Unknown editor callback status %s for file %s", status, file_id)
            return self._record(status, CallbackOutcome(SessionState.IDLE))

        outcome = await self._save(db, storage, file_obj, data, status)
        return self._record(status, outcome)

    async def _save(self, db: AsyncSession, storage: StorageGateway, file_obj: File,
                    data: Dict[str, Any], status: int) -> CallbackOutcome:
        url = data.get("url")
        if not url:
            logger.error("Save requested for file %s without a document URL", file_obj.id)
            return CallbackOutcome(SessionState.SAVE_FAILED)

        file_id = file_obj.id
        marker = None
        redis_client = await get_redis()
        if redis_client is not None and status == CallbackStatus.READY_FOR_SAVE and data.get("key"):
            marker = f"editor:saved:{file_id}:{data['key']}"
            try:
                first = await redis_client.set(marker, "1", nx=True, ex=settings.EDITOR_SAVE_MARKER_TTL)
            except Exception as e:
                logger.warning("Save de-duplication unavailable: %s", e)
                marker = None
            else:
                if not first:
                    logger.info("Duplicate save callback for file %s ignored", file_id)
                    return CallbackOutcome(SessionState.IDLE)

        saved = False
        try:
            content = await self.fetch_document(url)
            # Overwrite in place: the storage key never changes
            await storage.put(file_obj.storage_key, content, file_obj.mime_type)
            file_obj.size = len(content)
            file_obj.updated_at = datetime.utcnow()
            await db.commit()
            saved = True
        except (EditorSaveError, StorageError, SQLAlchemyError) as e:
            await db.rollback()
            logger.error("Saving edited document %s failed: %s", file_id, e)
            return CallbackOutcome(SessionState.SAVE_FAILED)
        finally:
            # A retry of the same save must not be mistaken for a duplicate
            if marker and not saved:
                try:
                    await redis_client.delete(marker)
                except Exception as redis_error:
                    logger.warning("Could not release save marker: %s", redis_error)

        logger.info("Edited document %s saved (%s bytes)", file_id, len(content))
        return CallbackOutcome(SessionState.IDLE, saved=True)

    @staticmethod
    def _record(status, outcome: CallbackOutcome) -> CallbackOutcome:
        try:
            label = CallbackStatus(status).name.lower()
        except (ValueError, TypeError):
            label = "unknown"
        result = "saved" if outcome.saved else outcome.state.value
        editor_callbacks.labels(status=label, result=result).inc()
        return outcome


collaboration_service = CollaborationService()
