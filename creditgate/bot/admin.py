"""
Admin commands. Every mutation is written to the audit log with the admin's telegram id.
"""
import logging

from aiogram import Bot, Router
from aiogram.filters import Command, CommandObject
from aiogram.types import Message

from creditgate.bot.common import ERROR_TEXT, GETLINK_PREFIX, get_db_session
from creditgate.bot.filters import AdminFilter
from creditgate.services.accounts.service import AccountService
from creditgate.services.app_settings.settings_service import AppSettingsService
from creditgate.services.audit.service import AuditService
from creditgate.services.content.service import ContentService
from creditgate.services.credits.service import CreditService
from creditgate.services.force_subscribe.service import ForceSubscribeService
from creditgate.services.shortener.service import ShortenerTokenService, mask_token
from creditgate.workers.tasks.broadcast import broadcast_message

logger = logging.getLogger("bot")

router = Router(name="admin")
router.message.filter(AdminFilter())


def _args(command: CommandObject) -> list[str]:
    return (command.args or "").split()


def _audit(db, admin_id: str, action: str, entity_type: str, entity_id: str | None, payload: dict | None = None) -> None:
    AuditService(db).log("admin", admin_id, action, entity_type, entity_id, payload)


async def _notify(bot: Bot, telegram_id: str, text: str) -> None:
    try:
        await bot.send_message(int(telegram_id), text)
    except Exception as e:
        logger.warning("admin_notify_failed", extra={"chat_id": telegram_id, "error": str(e)})


@router.message(Command("premium"))
async def cmd_premium(message: Message, command: CommandObject, bot: Bot):
    args = _args(command)
    if len(args) != 2 or not args[0].isdigit() or not args[1].isdigit() or int(args[1]) <= 0:
        await message.answer("Usage: /premium <telegram_id> <days>")
        return
    telegram_id, days = args[0], int(args[1])
    admin_id = str(message.from_user.id)
    try:
        with get_db_session() as db:
            accounts = AccountService(db)
            account, _ = accounts.get_or_create(telegram_id)
            accounts.grant_premium(account, days)
            _audit(db, admin_id, "premium_granted", "account", account.id, {"days": days})
            expires = account.premium_expires_at.strftime("%Y-%m-%d %H:%M UTC")
        await message.answer(f"✅ Premium granted to {telegram_id} for {days} days (until {expires}).")
        await _notify(bot, telegram_id, f"🌟 You now have Premium for {days} days!")
    except Exception:
        logger.exception("Error in cmd_premium", extra={"user_id": admin_id})
        await message.answer(ERROR_TEXT)


@router.message(Command("rmpremium"))
async def cmd_rmpremium(message: Message, command: CommandObject, bot: Bot):
    args = _args(command)
    if len(args) != 1:
        await message.answer("Usage: /rmpremium <telegram_id>")
        return
    telegram_id = args[0]
    admin_id = str(message.from_user.id)
    try:
        with get_db_session() as db:
            accounts = AccountService(db)
            account = accounts.get_by_telegram_id(telegram_id)
            if not account:
                await message.answer("❌ User not found.")
                return
            accounts.revoke_premium(account)
            _audit(db, admin_id, "premium_revoked", "account", account.id)
        await message.answer(f"✅ Premium removed from {telegram_id}.")
        await _notify(bot, telegram_id, "ℹ️ Your Premium access has ended.")
    except Exception:
        logger.exception("Error in cmd_rmpremium", extra={"user_id": admin_id})
        await message.answer(ERROR_TEXT)


async def _set_ban(message: Message, command: CommandObject, banned: bool) -> None:
    name = "ban" if banned else "unban"
    args = _args(command)
    if len(args) != 1:
        await message.answer(f"Usage: /{name} <telegram_id>")
        return
    telegram_id = args[0]
    admin_id = str(message.from_user.id)
    if banned and telegram_id == admin_id:
        await message.answer("❌ You cannot ban yourself.")
        return
    try:
        with get_db_session() as db:
            accounts = AccountService(db)
            account = accounts.get_by_telegram_id(telegram_id)
            if not account:
                await message.answer("❌ User not found.")
                return
            changed = accounts.ban(account) if banned else accounts.unban(account)
            if changed:
                _audit(db, admin_id, f"account_{name}ned", "account", account.id)
        if changed:
            await message.answer(f"✅ {telegram_id} {name}ned.")
        else:
            await message.answer(f"ℹ️ {telegram_id} was already {'banned' if banned else 'active'}.")
    except Exception:
        logger.exception(f"Error in cmd_{name}", extra={"user_id": admin_id})
        await message.answer(ERROR_TEXT)


@router.message(Command("ban"))
async def cmd_ban(message: Message, command: CommandObject):
    await _set_ban(message, command, banned=True)


@router.message(Command("unban"))
async def cmd_unban(message: Message, command: CommandObject):
    await _set_ban(message, command, banned=False)


@router.message(Command("banned"))
async def cmd_banned(message: Message):
    with get_db_session() as db:
        rows = [(a.telegram_id, a.display_name) for a in AccountService(db).list_banned()]
    if not rows:
        await message.answer("No banned users.")
        return
    lines = [f"• {tid} {name or ''}".rstrip() for tid, name in rows[:50]]
    await message.answer(f"🚫 Banned users ({len(rows)}):\n" + "\n".join(lines))


@router.message(Command("reset"))
async def cmd_reset(message: Message, command: CommandObject):
    args = _args(command)
    if len(args) != 1:
        await message.answer("Usage: /reset <telegram_id>")
        return
    admin_id = str(message.from_user.id)
    with get_db_session() as db:
        account = AccountService(db).get_by_telegram_id(args[0])
        if not account:
            await message.answer("❌ User not found.")
            return
        CreditService(db).zero(account)
        _audit(db, admin_id, "credits_reset", "account", account.id)
    await message.answer(f"✅ Credits of {args[0]} reset to 0.")


@router.message(Command("addcredits"))
async def cmd_addcredits(message: Message, command: CommandObject):
    args = _args(command)
    if len(args) != 2 or not args[1].isdigit() or int(args[1]) <= 0:
        await message.answer("Usage: /addcredits <telegram_id> <amount>")
        return
    admin_id = str(message.from_user.id)
    amount = int(args[1])
    with get_db_session() as db:
        account = AccountService(db).get_by_telegram_id(args[0])
        if not account:
            await message.answer("❌ User not found.")
            return
        balance = CreditService(db).top_up(account, amount)
        _audit(db, admin_id, "credits_top_up", "account", account.id, {"amount": amount})
    await message.answer(f"✅ +{amount} credits for {args[0]}. Balance: {balance}.")


@router.message(Command("addtokens"))
async def cmd_addtokens(message: Message, command: CommandObject):
    token = (command.args or "").strip()
    if not token:
        await message.answer("Usage: /addtokens <shortener_api_token>")
        return
    admin_id = str(message.from_user.id)
    with get_db_session() as db:
        row = ShortenerTokenService(db).rotate(token)
        _audit(db, admin_id, "shortener_token_rotated", "shortener_token", row.id)
    await message.answer(f"✅ Shortener token set: {mask_token(token)}")


@router.message(Command("showtokens"))
async def cmd_showtokens(message: Message):
    with get_db_session() as db:
        rows = [(mask_token(r.token), r.is_active) for r in ShortenerTokenService(db).list_all()]
    if not rows:
        await message.answer("No shortener tokens stored.")
        return
    lines = [f"{'🟢' if active else '⚪️'} {masked}" for masked, active in rows[:20]]
    await message.answer("🔑 Shortener tokens:\n" + "\n".join(lines))


@router.message(Command("forsub"))
async def cmd_forsub(message: Message, command: CommandObject):
    args = _args(command)
    if not args:
        await message.answer("Usage: /forsub <channel link or @username or -100id> [invite link]")
        return
    admin_id = str(message.from_user.id)
    with get_db_session() as db:
        rule = ForceSubscribeService(db).add_rule(args[0], args[1] if len(args) > 1 else None)
        _audit(db, admin_id, "force_subscribe_added", "force_subscribe_rule", rule.id, {"channel_ref": rule.channel_ref})
        ref = rule.channel_ref
    await message.answer(f"✅ Force-subscribe enabled for {ref}.\nMake sure the bot is an admin there.")


@router.message(Command("unforsub"))
async def cmd_unforsub(message: Message, command: CommandObject):
    query = (command.args or "").strip()
    admin_id = str(message.from_user.id)
    with get_db_session() as db:
        svc = ForceSubscribeService(db)
        if not query:
            active = [r.channel_ref for r in svc.list_active()]
            await message.answer(
                "Usage: /unforsub <channel>\n\nActive:\n" + ("\n".join(active) if active else "none")
            )
            return
        removed = svc.remove_rule(query)
        for rule in removed:
            _audit(db, admin_id, "force_subscribe_removed", "force_subscribe_rule", rule.id)
        refs = [r.channel_ref for r in removed]
    if refs:
        await message.answer("✅ Removed: " + ", ".join(refs))
    else:
        await message.answer("❌ No matching channel.")


@router.message(Command("addadmin"))
async def cmd_addadmin(message: Message, command: CommandObject):
    args = _args(command)
    if len(args) != 1 or not args[0].isdigit():
        await message.answer("Usage: /addadmin <telegram_id>")
        return
    admin_id = str(message.from_user.id)
    with get_db_session() as db:
        account = AccountService(db).promote_admin(args[0])
        _audit(db, admin_id, "admin_added", "account", account.id)
    await message.answer(f"✅ {args[0]} is now an admin.")


@router.message(Command("admins"))
async def cmd_admins(message: Message):
    with get_db_session() as db:
        rows = [(a.telegram_id, a.display_name) for a in AccountService(db).list_admins()]
    lines = [f"• {tid} {name or ''}".rstrip() for tid, name in rows]
    await message.answer("👮 Admins:\n" + ("\n".join(lines) if lines else "none"))


@router.message(Command("stats"))
async def cmd_stats(message: Message):
    with get_db_session() as db:
        stats = AccountService(db).stats()
        stats["content_items"] = ContentService(db).count()
    await message.answer(
        "📊 Stats\n\n"
        f"👥 Users: {stats['accounts']}\n"
        f"🌟 Premium: {stats['premium']}\n"
        f"🚫 Banned: {stats['banned']}\n"
        f"🎬 Content items: {stats['content_items']}"
    )


@router.message(Command("list"))
async def cmd_list(message: Message):
    with get_db_session() as db:
        svc = ContentService(db)
        total = svc.count()
        items = [(i.short_id, i.title, i.status) for i in svc.list_recent(20)]
    if not items:
        await message.answer("No content yet. Use /addfiles.")
        return
    lines = [
        f"{n}. {title}{'' if status == 'published' else ' (draft)'}\n   {GETLINK_PREFIX}{short_id}"
        for n, (short_id, title, status) in enumerate(items, 1)
    ]
    await message.answer(f"🎬 Total: {total}\n\n" + "\n".join(lines))


@router.message(Command("delete"))
async def cmd_delete(message: Message, command: CommandObject):
    ref = (command.args or "").strip()
    if not ref:
        await message.answer("Usage: /delete <id prefix>")
        return
    admin_id = str(message.from_user.id)
    with get_db_session() as db:
        svc = ContentService(db)
        item = svc.find_by_ref(ref)
        if not item:
            await message.answer("❌ Not found (or prefix is ambiguous).")
            return
        item_id, title = item.id, item.title
        svc.delete(item)
        _audit(db, admin_id, "content_deleted", "content_item", item_id)
    await message.answer(f"🗑 Deleted «{title}».")


async def _set_published(message: Message, command: CommandObject, published: bool) -> None:
    ref = (command.args or "").strip()
    if not ref:
        await message.answer(f"Usage: /{'publish' if published else 'unpublish'} <id prefix>")
        return
    with get_db_session() as db:
        svc = ContentService(db)
        item = svc.find_by_ref(ref)
        if not item:
            await message.answer("❌ Not found (or prefix is ambiguous).")
            return
        if published:
            svc.publish(item)
        else:
            svc.unpublish(item)
        title, status = item.title, item.status
    await message.answer(f"✅ «{title}» is now {status}.")


@router.message(Command("publish"))
async def cmd_publish(message: Message, command: CommandObject):
    await _set_published(message, command, published=True)


@router.message(Command("unpublish"))
async def cmd_unpublish(message: Message, command: CommandObject):
    await _set_published(message, command, published=False)


@router.message(Command("myswitch"))
async def cmd_myswitch(message: Message):
    admin_id = str(message.from_user.id)
    with get_db_session() as db:
        active = AppSettingsService(db).toggle_bot()
        _audit(db, admin_id, "bot_switched", "app_settings", "1", {"bot_active": active})
    await message.answer("🟢 Bot is ON for everyone." if active else "🔴 Bot is OFF (admins only).")


@router.message(Command("broadcast"))
async def cmd_broadcast(message: Message, command: CommandObject):
    text = (command.args or "").strip()
    if not text:
        await message.answer("Usage: /broadcast <text>")
        return
    task = broadcast_message.delay(text)
    logger.info("broadcast_queued", extra={"user_id": str(message.from_user.id)})
    await message.answer(f"📣 Broadcast queued (task {task.id}).")
