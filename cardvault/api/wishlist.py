"""Storefront wishlist routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import HTMLResponse, JSONResponse
from itsdangerous import BadSignature
from pydantic import BaseModel
from sqlalchemy.engine import Engine

from cardvault.api.deps import get_engine
from cardvault.logic import wishlist
from cardvault.utils.urls import load_token

router = APIRouter(tags=["wishlist"])


class WishlistIntent(BaseModel):
    id: str | None = None
    intent: str | None = None
    keyword: str | None = None
    email: str | None = None


@router.get("/apps/wishlist")
async def get_wishlist(id: str | None = Query(None), engine: Engine = Depends(get_engine)) -> JSONResponse:
    if not id or not id.strip():
        return JSONResponse({"error": "No id provided"}, status_code=400)
    return JSONResponse(wishlist.get_or_create(engine, id))


@router.post("/apps/wishlist")
async def update_wishlist(payload: WishlistIntent, engine: Engine = Depends(get_engine)) -> JSONResponse:
    try:
        snapshot = wishlist.apply_intent(
            engine, payload.id, payload.intent, keyword=payload.keyword, email=payload.email
        )
    except wishlist.WishlistError as exc:
        return JSONResponse({"error": str(exc)}, status_code=exc.status_code)
    return JSONResponse(snapshot)


@router.get("/apps/wishlist/unsubscribe", response_class=HTMLResponse)
async def unsubscribe(token: str = Query(...), engine: Engine = Depends(get_engine)) -> HTMLResponse:
    try:
        data = load_token(token, "unsubscribe")
    except BadSignature as exc:
        raise HTTPException(status_code=400, detail="Invalid token") from exc
    wishlist_id = data.get("wishlist_id")
    if not wishlist_id:
        raise HTTPException(status_code=400, detail="Invalid token")
    wishlist.unsubscribe(engine, str(wishlist_id))
    return HTMLResponse("<p>You will no longer receive wishlist emails.</p>")
