"""Subscription API: list, create-or-replace per kind, renew, delete. Session required."""

from typing import Any

from fastapi import APIRouter, Depends

from src.auth.sessions import Session
from src.webhook.deps import get_subscriptions, require_session
from src.webhook.subscription import SubscriptionKind, SubscriptionManager

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.get("")
async def list_subscriptions(
    session: Session = Depends(require_session),
    manager: SubscriptionManager = Depends(get_subscriptions),
) -> dict[str, Any]:
    subs = await manager.list(session.access_token)
    return {"value": [s.to_api() for s in subs]}


@router.post("/mail")
async def create_mail_subscription(
    session: Session = Depends(require_session),
    manager: SubscriptionManager = Depends(get_subscriptions),
) -> dict[str, Any]:
    result = await manager.create_or_replace(session.access_token, SubscriptionKind.MAIL)
    return result.to_response()


@router.post("/teams")
async def create_teams_subscription(
    session: Session = Depends(require_session),
    manager: SubscriptionManager = Depends(get_subscriptions),
) -> dict[str, Any]:
    result = await manager.create_or_replace(session.access_token, SubscriptionKind.TEAMS)
    return result.to_response()


@router.post("/{subscription_id}/renew")
async def renew_subscription(
    subscription_id: str,
    session: Session = Depends(require_session),
    manager: SubscriptionManager = Depends(get_subscriptions),
) -> dict[str, Any]:
    sub = await manager.renew(session.access_token, subscription_id)
    return {"success": True, "subscription": sub.to_api()}


@router.delete("/{subscription_id}")
async def delete_subscription(
    subscription_id: str,
    session: Session = Depends(require_session),
    manager: SubscriptionManager = Depends(get_subscriptions),
) -> dict[str, Any]:
    await manager.delete(session.access_token, subscription_id)
    return {"success": True, "message": "Subscription deleted"}
