# services/share-service/fileshare/services/tree.py
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.database import Folder

logger = logging.getLogger(__name__)

MAX_TREE_DEPTH = 20


async def ancestors(db: AsyncSession, folder_id: Optional[str],
                    max_depth: int = MAX_TREE_DEPTH) -> List[Folder]:
    """Folders from the root down to ``folder_id`` (inclusive).

    Stops after ``max_depth`` hops or on a repeated id, whichever comes first.
    """
    chain: List[Folder] = []
    seen = set()
    current_id = folder_id
    while current_id and current_id not in seen and len(chain) < max_depth:
        seen.add(current_id)
        result = await db.execute(select(Folder).filter(Folder.id == current_id))
        folder = result.scalar_one_or_none()
        if folder is None:
            break
        chain.append(folder)
        current_id = folder.parent_id
    if current_id and (current_id in seen or len(chain) >= max_depth):
        logger.warning("Stopped walking ancestors of folder %s after %s hops", folder_id, len(chain))
    chain.reverse()
    return chain
