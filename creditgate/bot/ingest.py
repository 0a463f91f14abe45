"""
Admin content ingestion wizard: /addfiles -> search key -> title -> files and links -> /end.
State lives in aiogram FSM storage (Redis, with TTL) keyed by the admin's chat; /canceladd aborts.
"""
import logging
import re

from aiogram import F, Router
from aiogram.filters import Command, StateFilter
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import State, StatesGroup
from aiogram.types import Message

from creditgate.bot.common import ERROR_TEXT, GETLINK_PREFIX, get_db_session
from creditgate.bot.filters import AdminFilter
from creditgate.services.audit.service import AuditService
from creditgate.services.content.service import ContentService

logger = logging.getLogger("bot")

router = Router(name="ingest")
router.message.filter(AdminFilter())

_URL_RE = re.compile(r"https?://\S+")


class IngestStates(StatesGroup):
    waiting_for_key = State()
    waiting_for_title = State()
    collecting = State()


def extract_file(message: Message) -> dict | None:
    """Describe the Telegram file carried by a message, or None for plain text."""
    caption = message.caption
    if message.animation:
        a = message.animation
        return {"asset_type": "animation", "telegram_file_id": a.file_id, "file_name": a.file_name,
                "mime_type": a.mime_type, "file_size": a.file_size, "caption": caption}
    if message.document:
        d = message.document
        return {"asset_type": "document", "telegram_file_id": d.file_id, "file_name": d.file_name,
                "mime_type": d.mime_type, "file_size": d.file_size, "caption": caption}
    if message.video:
        v = message.video
        return {"asset_type": "video", "telegram_file_id": v.file_id, "file_name": v.file_name,
                "mime_type": v.mime_type, "file_size": v.file_size, "caption": caption}
    if message.photo:
        p = message.photo[-1]
        return {"asset_type": "photo", "telegram_file_id": p.file_id, "file_name": None,
                "mime_type": "image/jpeg", "file_size": p.file_size, "caption": caption}
    if message.audio:
        a = message.audio
        return {"asset_type": "audio", "telegram_file_id": a.file_id, "file_name": a.file_name,
                "mime_type": a.mime_type, "file_size": a.file_size, "caption": caption}
    if message.voice:
        v = message.voice
        return {"asset_type": "voice", "telegram_file_id": v.file_id, "file_name": None,
                "mime_type": v.mime_type, "file_size": v.file_size, "caption": caption}
    if message.sticker:
        s = message.sticker
        return {"asset_type": "sticker", "telegram_file_id": s.file_id, "file_name": None,
                "mime_type": None, "file_size": s.file_size, "caption": None}
    return None


@router.message(Command("addfiles"))
async def cmd_addfiles(message: Message, state: FSMContext):
    await state.clear()
    await state.set_state(IngestStates.waiting_for_key)
    await state.update_data(files=[], links=[])
    await message.answer("🎬 Add new content\n\nSend the search keyword.\n\n(/canceladd to cancel)")


@router.message(Command("canceladd"))
async def cmd_canceladd(message: Message, state: FSMContext):
    current = await state.get_state()
    if current is None or not current.startswith(IngestStates.__name__):
        await message.answer("Nothing to cancel.")
        return
    await state.clear()
    await message.answer("❌ Adding cancelled.")


@router.message(StateFilter(IngestStates.waiting_for_key), F.text, ~F.text.startswith("/"))
async def ingest_key(message: Message, state: FSMContext):
    await state.update_data(key=message.text.strip())
    await state.set_state(IngestStates.waiting_for_title)
    await message.answer("Now send the display title.")


@router.message(StateFilter(IngestStates.waiting_for_title), F.text, ~F.text.startswith("/"))
async def ingest_title(message: Message, state: FSMContext):
    await state.update_data(title=message.text.strip())
    await state.set_state(IngestStates.collecting)
    await message.answer("Send files and/or links. Send /end when done.")


@router.message(Command("end"), StateFilter(IngestStates.collecting))
async def cmd_end(message: Message, state: FSMContext):
    data = await state.get_data()
    files = data.get("files") or []
    links = data.get("links") or []
    admin_id = str(message.from_user.id)
    try:
        with get_db_session() as db:
            svc = ContentService(db)
            item = svc.create(data["key"], data["title"])
            for f in files:
                svc.add_asset(item, **f)
            for url in links:
                svc.add_asset(item, "link", url=url)
            svc.publish(item)
            AuditService(db).log(
                actor_type="admin",
                actor_id=admin_id,
                action="content_created",
                entity_type="content_item",
                entity_id=item.id,
                payload={"files": len(files), "links": len(links)},
            )
            short_id, title = item.short_id, item.title
        await state.clear()
        await message.answer(
            f"✅ Saved!\n\n🎬 {title}\n📁 {len(files)} files\n🔗 {len(links)} links\n\n"
            f"👇 Preview:\n{GETLINK_PREFIX}{short_id}"
        )
    except Exception:
        logger.exception("Error in cmd_end", extra={"user_id": admin_id})
        await message.answer(ERROR_TEXT)


@router.message(Command("end"))
async def cmd_end_without_wizard(message: Message):
    await message.answer("Nothing pending. Use /addfiles first.")


@router.message(StateFilter(IngestStates.collecting))
async def ingest_collect(message: Message, state: FSMContext):
    file_info = extract_file(message)
    data = await state.get_data()
    files = list(data.get("files") or [])
    links = list(data.get("links") or [])
    if file_info:
        files.append(file_info)
    else:
        found = _URL_RE.findall(message.text or "")
        if not found:
            await message.answer("Send a file or a link, or /end to finish.")
            return
        links.extend(found)
    await state.update_data(files=files, links=links)
    await message.answer(f"➕ Added. Total: {len(files) + len(links)}. Send more or /end.")
