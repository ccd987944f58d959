"""Bookmark folder endpoints used to set up sync targets."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException

from marksync.dependencies import Context
from marksync.models.control import FolderCreate
from marksync.services.bookmarks import BookmarkNode, BookmarkStoreError

router = APIRouter(prefix="/folders", tags=["bookmarks"])


def _node(node: BookmarkNode) -> dict:
    return {
        "id": node.id,
        "parent_id": node.parent_id,
        "title": node.title,
        "url": node.url,
        "date_added": node.date_added.isoformat(),
    }


@router.post("", status_code=201)
async def create_folder(context: Context, body: FolderCreate) -> dict:
    try:
        folder = await context.bookmarks.create_folder(body.title, body.parent_id)
    except BookmarkStoreError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _node(folder)


@router.get("/{folder_id}/children")
async def list_children(folder_id: str, context: Context) -> list[dict]:
    try:
        nodes = await context.bookmarks.children(folder_id)
    except BookmarkStoreError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return [_node(node) for node in nodes]
