"""
Telegram side of the fleet: two aiogram dispatchers, one per role.

Handlers only translate between Telegram updates and the workflows; every
decision is made in ``workflows.py``.
"""

from __future__ import annotations

import asyncio

from aiogram import Bot, Dispatcher, F, Router
from aiogram.filters import Command, CommandStart, ExceptionTypeFilter, or_f
from aiogram.types import CallbackQuery, ErrorEvent, Message, Update

from .config import Settings, settings
from .db import engine as default_engine
from .errors import FleetError, NotAuthenticated
from .journeys import JourneyQuery
from .logger import get_logger
from .notify import Notifier, TelegramChannel
from .sessions import Role, SessionStore
from .store import FleetStore
from .views import (
    AssigneePick,
    DestinationPick,
    JourneyDayPick,
    JourneyUserPick,
    ReturnPick,
    UNKNOWN_COMMAND,
    VehiclePick,
    assignment_reply,
    day_keyboard,
    journey_table,
    main_keyboard,
    prompt_keyboard,
    return_keyboard,
    return_reply,
    start_message,
    status_table,
    user_keyboard,
)
from .workflows import Workflows

logger = get_logger(__name__)


def _menu_or_command(label: str, command: str):
    return or_f(Command(command), F.text == label)


async def _reply(update: Update, text: str, **kwargs) -> None:
    if update.message:
        await update.message.answer(text, **kwargs)
    elif update.callback_query:
        await update.callback_query.answer()
        if update.callback_query.message:
            await update.callback_query.message.answer(text, **kwargs)


def build_router(role: Role, admin_ids: set[int] | frozenset = frozenset()) -> Router:
    router = Router(name=role.value)
    menu = main_keyboard(role)
    is_admin = role == Role.administrator

    if is_admin and admin_ids:
        router.message.filter(F.from_user.id.in_(admin_ids))
        router.callback_query.filter(F.from_user.id.in_(admin_ids))

    # ------------------------------ Общее ------------------------------

    @router.message(CommandStart())
    async def on_start(m: Message):
        await m.answer(start_message(role, settings.HOME_BASE), reply_markup=menu)

    @router.message(_menu_or_command("Status", "status"))
    async def on_status(m: Message, fleet: Workflows):
        vehicles = fleet.store.list_vehicles()
        await m.answer(
            status_table(vehicles, settings.TIMEZONE, settings.HOME_BASE),
            parse_mode="HTML",
            reply_markup=menu,
        )

    # ----------------------------- Выдача ------------------------------

    @router.message(_menu_or_command("Assign", "assign"))
    async def on_assign(m: Message, fleet: Workflows):
        prompt = fleet.assignment.begin(m.from_user.id)
        await m.answer(prompt.text, reply_markup=prompt_keyboard(prompt))

    @router.callback_query(VehiclePick.filter())
    async def on_vehicle(cq: CallbackQuery, callback_data: VehiclePick, fleet: Workflows):
        prompt = fleet.assignment.select_vehicle(cq.from_user.id, callback_data.name)
        await cq.answer()
        await cq.message.answer(prompt.text, reply_markup=prompt_keyboard(prompt))

    @router.callback_query(AssigneePick.filter())
    async def on_assignee(cq: CallbackQuery, callback_data: AssigneePick, fleet: Workflows):
        prompt = fleet.assignment.select_assignee(cq.from_user.id, callback_data.user_id)
        await cq.answer()
        await cq.message.answer(prompt.text, reply_markup=prompt_keyboard(prompt))

    @router.callback_query(DestinationPick.filter())
    async def on_destination(cq: CallbackQuery, callback_data: DestinationPick, fleet: Workflows):
        result = await fleet.assignment.select_destination(cq.from_user.id, callback_data.name)
        await cq.answer()
        await cq.message.answer(assignment_reply(result, settings.TIMEZONE), reply_markup=menu)

    # ----------------------------- Возврат -----------------------------

    @router.message(_menu_or_command("Return", "return"))
    async def on_return(m: Message, fleet: Workflows):
        if not is_admin:
            result = await fleet.returns.return_own(m.from_user.id)
            await m.answer(return_reply(result, settings.TIMEZONE, settings.HOME_BASE), reply_markup=menu)
            return
        prompt = fleet.returns.begin(m.from_user.id)
        await m.answer(prompt.text, reply_markup=return_keyboard(prompt))

    @router.callback_query(ReturnPick.filter())
    async def on_return_pick(cq: CallbackQuery, callback_data: ReturnPick, fleet: Workflows):
        result = await fleet.returns.commit(cq.from_user.id, callback_data.name)
        await cq.answer()
        await cq.message.answer(
            return_reply(result, settings.TIMEZONE, settings.HOME_BASE), reply_markup=menu
        )

    # ----------------------------- Поездки -----------------------------

    @router.message(_menu_or_command("Journey Details", "journey"))
    async def on_journey(m: Message, fleet: Workflows):
        if is_admin:
            users = fleet.store.list_users()
            if not users:
                await m.answer("No users found.", reply_markup=menu)
                return
            await m.answer(
                "Select a user to view their journey details:", reply_markup=user_keyboard(users)
            )
            return
        user = fleet.store.get_user_by_telegram_id(m.from_user.id)
        if user is None:
            raise NotAuthenticated("You are not authenticated to view journey details.")
        await m.answer(
            "Select the date for your journey details:", reply_markup=day_keyboard(user.id)
        )

    @router.callback_query(JourneyUserPick.filter())
    async def on_journey_user(cq: CallbackQuery, callback_data: JourneyUserPick):
        await cq.answer()
        await cq.message.answer(
            "Select the date for journey details:",
            reply_markup=day_keyboard(callback_data.user_id),
        )

    @router.callback_query(JourneyDayPick.filter())
    async def on_journey_day(cq: CallbackQuery, callback_data: JourneyDayPick, fleet: Workflows):
        user_id = callback_data.user_id
        if not is_admin:
            # Сотрудник видит только свои поездки, id из кнопки не доверяем
            user = fleet.store.get_user_by_telegram_id(cq.from_user.id)
            if user is None:
                raise NotAuthenticated("You are not authenticated to view journey details.")
            user_id = user.id
        report = fleet.journeys.for_user(user_id, callback_data.offset)
        await cq.answer()
        await cq.message.answer(
            journey_table(report, settings.TIMEZONE, own=not is_admin),
            parse_mode="HTML",
            reply_markup=menu,
        )

    # ------------------------------ Прочее -----------------------------

    @router.message()
    async def on_unknown(m: Message):
        await m.answer(UNKNOWN_COMMAND, reply_markup=menu)

    @router.errors(ExceptionTypeFilter(FleetError))
    async def on_fleet_error(event: ErrorEvent):
        exc = event.exception
        logger.info(f"[{role.value}] {exc.error_code}: {exc.message}")
        await _reply(event.update, exc.message, reply_markup=menu)
        return True

    router.errors.register(on_unexpected_error)
    return router


async def on_unexpected_error(event: ErrorEvent):
    # Падение одного апдейта не должно ронять процесс
    logger.error(f"Unhandled error in update {event.update.update_id}", exc_info=event.exception)
    try:
        await _reply(event.update, "An unexpected error occurred. Please try again later.")
    except Exception:
        logger.exception("Could not report the error to the operator")
    return True


def build_workflows(cfg: Settings = settings, engine=None) -> dict[Role, Workflows]:
    store = FleetStore(engine or default_engine)
    sessions = SessionStore(ttl_seconds=cfg.SESSION_TTL_SECONDS)
    notifier = Notifier(
        users=TelegramChannel(cfg.TELEGRAM_BOT_TOKEN),
        admins=TelegramChannel(cfg.ADMIN_BOT_TOKEN),
        admin_chat_id=cfg.ADMIN_TELEGRAM_ID,
    )
    journeys = JourneyQuery(store, tz=cfg.TIMEZONE)
    return {role: Workflows(role, store, sessions, notifier, journeys) for role in Role}


def build_dispatcher(workflows: Workflows, admin_ids: set[int] | frozenset = frozenset()) -> Dispatcher:
    dp = Dispatcher(fleet=workflows)
    dp.include_router(build_router(workflows.role, admin_ids))
    return dp


async def purge_sessions(sessions: SessionStore, every_seconds: int = 600) -> None:
    while True:
        await asyncio.sleep(every_seconds)
        dropped = sessions.purge_expired()
        if dropped:
            logger.info(f"Dropped {dropped} abandoned workflow sessions")


async def start_bots(cfg: Settings = settings) -> None:
    """Poll both bots until cancelled."""
    workflows = build_workflows(cfg)
    tasks = []
    tokens = {
        Role.self_service: cfg.TELEGRAM_BOT_TOKEN,
        Role.administrator: cfg.ADMIN_BOT_TOKEN,
    }
    for role, token in tokens.items():
        if not token:
            logger.warning(f"No token configured for the {role.value} bot, it stays offline")
            continue
        dp = build_dispatcher(workflows[role], cfg.admin_ids)
        tasks.append(asyncio.create_task(dp.start_polling(Bot(token), handle_signals=False), name=role.value))

    sessions = workflows[Role.self_service].sessions
    tasks.append(asyncio.create_task(purge_sessions(sessions), name="sessions"))
    await asyncio.gather(*tasks)
