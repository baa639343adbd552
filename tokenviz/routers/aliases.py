"""Alias document endpoints."""
from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from tokenviz.aliases import alias_store
from tokenviz.errors import AliasDocumentError

logger = logging.getLogger("tokenviz.aliases")

aliases_router = APIRouter(prefix="/api/aliases", tags=["aliases"])


class AliasesPayload(BaseModel):
    aliases: dict[str, str] = Field(default_factory=dict)


@aliases_router.get("")
async def get_aliases():
    return {"aliases": await asyncio.to_thread(alias_store.load)}


@aliases_router.post("")
async def save_aliases(body: AliasesPayload):
    """Replace the alias map; other fields in the document are kept."""
    try:
        saved = await asyncio.to_thread(alias_store.save, body.aliases)
    except AliasDocumentError as exc:
        logger.error(str(exc))
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"success": True, "message": "Aliases saved successfully", "aliases": saved}
