"""
Admin API: accounts (premium, ban, credits, grants), force-subscribe rules,
content, app switches, broadcast, audit. All routes require X-Admin-Key.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from creditgate.api.deps import require_admin
from creditgate.db.session import get_db
from creditgate.entitlement.errors import ContentNotFoundError
from creditgate.models.account import Account
from creditgate.services.access.service import AccessService
from creditgate.services.accounts.service import AccountService
from creditgate.services.app_settings.settings_service import AppSettingsService
from creditgate.services.audit.service import AuditService
from creditgate.services.content.service import ContentService
from creditgate.services.credits.service import CreditService
from creditgate.services.force_subscribe.service import ForceSubscribeService
from creditgate.workers.tasks.broadcast import broadcast_message
from creditgate.workers.tasks.notify import notify_user

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


class PremiumIn(BaseModel):
    days: int = Field(..., gt=0, le=3650)


class CreditsIn(BaseModel):
    amount: int = Field(..., gt=0)


class GrantIn(BaseModel):
    content_ref: str


class RuleIn(BaseModel):
    channel: str
    invite_url: str | None = None


class AppSettingsIn(BaseModel):
    bot_active: bool | None = None


class BroadcastIn(BaseModel):
    message: str = Field(..., min_length=1, max_length=4096)


def _account_or_404(db: Session, telegram_id: str) -> Account:
    account = AccountService(db).get_by_telegram_id(telegram_id)
    if not account:
        raise HTTPException(404, "Account not found")
    return account


def _account_dict(account: Account) -> dict:
    return {
        "id": account.id,
        "telegram_id": account.telegram_id,
        "display_name": account.display_name,
        "role": account.role,
        "status": account.status,
        "credits": account.credits,
        "is_premium": account.is_premium,
        "premium_active": AccountService.is_premium_active(account),
        "premium_expires_at": account.premium_expires_at.isoformat() if account.premium_expires_at else None,
        "last_credit_reset": account.last_credit_reset.isoformat() if account.last_credit_reset else None,
        "created_at": account.created_at.isoformat() if account.created_at else None,
    }


def _audit(db: Session, action: str, entity_type: str, entity_id: str | None, payload: dict | None = None) -> None:
    AuditService(db).log("api", None, action, entity_type, entity_id, payload)


# ---------- Stats ----------
@router.get("/stats")
def stats(db: Session = Depends(get_db)):
    data = AccountService(db).stats()
    data["content_items"] = ContentService(db).count()
    data["force_subscribe_rules"] = len(ForceSubscribeService(db).list_active())
    return data


# ---------- Accounts ----------
@router.get("/accounts/{telegram_id}")
def account_get(telegram_id: str, db: Session = Depends(get_db)):
    return _account_dict(_account_or_404(db, telegram_id))


@router.post("/accounts/{telegram_id}/premium")
def account_grant_premium(telegram_id: str, payload: PremiumIn, db: Session = Depends(get_db)):
    account = _account_or_404(db, telegram_id)
    AccountService(db).grant_premium(account, payload.days)
    _audit(db, "premium_granted", "account", account.id, {"days": payload.days})
    db.commit()
    notify_user.delay(account.telegram_id, f"🌟 You now have Premium for {payload.days} days!")
    return _account_dict(account)


@router.delete("/accounts/{telegram_id}/premium")
def account_revoke_premium(telegram_id: str, db: Session = Depends(get_db)):
    account = _account_or_404(db, telegram_id)
    AccountService(db).revoke_premium(account)
    _audit(db, "premium_revoked", "account", account.id)
    db.commit()
    notify_user.delay(account.telegram_id, "ℹ️ Your Premium access has ended.")
    return _account_dict(account)


@router.post("/accounts/{telegram_id}/ban")
def account_ban(telegram_id: str, db: Session = Depends(get_db)):
    account = _account_or_404(db, telegram_id)
    changed = AccountService(db).ban(account)
    if changed:
        _audit(db, "account_banned", "account", account.id)
    db.commit()
    return {"ok": True, "changed": changed}


@router.post("/accounts/{telegram_id}/unban")
def account_unban(telegram_id: str, db: Session = Depends(get_db)):
    account = _account_or_404(db, telegram_id)
    changed = AccountService(db).unban(account)
    if changed:
        _audit(db, "account_unbanned", "account", account.id)
    db.commit()
    return {"ok": True, "changed": changed}


@router.post("/accounts/{telegram_id}/credits")
def account_top_up(telegram_id: str, payload: CreditsIn, db: Session = Depends(get_db)):
    account = _account_or_404(db, telegram_id)
    balance = CreditService(db).top_up(account, payload.amount)
    _audit(db, "credits_top_up", "account", account.id, {"amount": payload.amount})
    db.commit()
    return {"credits": balance}


@router.post("/accounts/{telegram_id}/credits/reset")
def account_reset_credits(telegram_id: str, db: Session = Depends(get_db)):
    account = _account_or_404(db, telegram_id)
    CreditService(db).zero(account)
    _audit(db, "credits_reset", "account", account.id)
    db.commit()
    return {"credits": account.credits}


@router.post("/accounts/{telegram_id}/grants")
def account_grant_access(telegram_id: str, payload: GrantIn, db: Session = Depends(get_db)):
    account = _account_or_404(db, telegram_id)
    try:
        item = ContentService(db).require_by_ref(payload.content_ref)
    except ContentNotFoundError:
        raise HTTPException(404, "Content not found")
    grant = AccessService(db).grant_or_renew(account, item)
    _audit(db, "access_granted", "content_item", item.id, {"account_id": account.id})
    db.commit()
    return {"content_id": item.id, "unlocked_at": grant.unlocked_at.isoformat()}


# ---------- Force-subscribe ----------
@router.get("/force-subscribe")
def rules_list(db: Session = Depends(get_db)):
    return [
        {"id": r.id, "channel_ref": r.channel_ref, "invite_url": r.invite_url}
        for r in ForceSubscribeService(db).list_active()
    ]


@router.post("/force-subscribe")
def rules_add(payload: RuleIn, db: Session = Depends(get_db)):
    rule = ForceSubscribeService(db).add_rule(payload.channel, payload.invite_url)
    _audit(db, "force_subscribe_added", "force_subscribe_rule", rule.id, {"channel_ref": rule.channel_ref})
    db.commit()
    return {"id": rule.id, "channel_ref": rule.channel_ref, "invite_url": rule.invite_url}


@router.delete("/force-subscribe")
def rules_remove(query: str = Query(..., min_length=1), db: Session = Depends(get_db)):
    removed = ForceSubscribeService(db).remove_rule(query)
    if not removed:
        raise HTTPException(404, "No matching rule")
    for rule in removed:
        _audit(db, "force_subscribe_removed", "force_subscribe_rule", rule.id)
    db.commit()
    return {"removed": [r.channel_ref for r in removed]}


# ---------- Content ----------
@router.get("/content")
def content_list(db: Session = Depends(get_db), limit: int = Query(20, ge=1, le=200)):
    return [
        {"id": i.id, "short_id": i.short_id, "title": i.title, "status": i.status}
        for i in ContentService(db).list_recent(limit)
    ]


@router.post("/content/{ref}/publish")
def content_publish(ref: str, db: Session = Depends(get_db)):
    svc = ContentService(db)
    try:
        item = svc.require_by_ref(ref)
    except ContentNotFoundError:
        raise HTTPException(404, "Content not found")
    svc.publish(item)
    db.commit()
    return {"id": item.id, "status": item.status}


@router.post("/content/{ref}/unpublish")
def content_unpublish(ref: str, db: Session = Depends(get_db)):
    svc = ContentService(db)
    try:
        item = svc.require_by_ref(ref)
    except ContentNotFoundError:
        raise HTTPException(404, "Content not found")
    svc.unpublish(item)
    db.commit()
    return {"id": item.id, "status": item.status}


@router.delete("/content/{ref}")
def content_delete(ref: str, db: Session = Depends(get_db)):
    svc = ContentService(db)
    try:
        item = svc.require_by_ref(ref)
    except ContentNotFoundError:
        raise HTTPException(404, "Content not found")
    item_id = item.id
    svc.delete(item)
    _audit(db, "content_deleted", "content_item", item_id)
    db.commit()
    return {"ok": True}


# ---------- App settings ----------
@router.get("/settings/app")
def app_settings_get(db: Session = Depends(get_db)):
    data = AppSettingsService(db).as_dict()
    db.commit()
    return data


@router.put("/settings/app")
def app_settings_update(payload: AppSettingsIn, db: Session = Depends(get_db)):
    data = AppSettingsService(db).update(payload.model_dump())
    _audit(db, "app_settings_updated", "app_settings", "1", payload.model_dump())
    db.commit()
    return data


# ---------- Broadcast ----------
@router.post("/broadcast")
def broadcast(payload: BroadcastIn):
    task = broadcast_message.delay(payload.message)
    return {"task_id": task.id}


# ---------- Audit ----------
@router.get("/audit")
def audit_list(db: Session = Depends(get_db), limit: int = Query(50, ge=1, le=500)):
    return [
        {
            "id": e.id,
            "actor_type": e.actor_type,
            "actor_id": e.actor_id,
            "action": e.action,
            "entity_type": e.entity_type,
            "entity_id": e.entity_id,
            "payload": e.payload,
            "created_at": e.created_at.isoformat() if e.created_at else None,
        }
        for e in AuditService(db).recent(limit)
    ]
