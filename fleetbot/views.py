from __future__ import annotations

from datetime import datetime, timezone
from html import escape
from zoneinfo import ZoneInfo

from aiogram.filters.callback_data import CallbackData
from aiogram.types import InlineKeyboardMarkup, KeyboardButton, ReplyKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

from .journeys import JourneyReport
from .models import User, Vehicle
from .sessions import Role, WorkflowState
from .workflows import AssignmentResult, Prompt, ReturnResult

# ------------------------- Callback payloads -------------------------


class VehiclePick(CallbackData, prefix="veh"):
    name: str


class AssigneePick(CallbackData, prefix="usr"):
    user_id: int


class DestinationPick(CallbackData, prefix="dst"):
    name: str


class ReturnPick(CallbackData, prefix="ret"):
    name: str


class JourneyUserPick(CallbackData, prefix="jusr"):
    user_id: int


class JourneyDayPick(CallbackData, prefix="jday"):
    user_id: int
    offset: int


PICKERS = {
    WorkflowState.selecting_vehicle: lambda value: VehiclePick(name=value),
    WorkflowState.selecting_assignee: lambda value: AssigneePick(user_id=value),
    WorkflowState.selecting_destination: lambda value: DestinationPick(name=value),
}

DAY_LABELS = ["Today", "Yesterday", "Day before Yesterday"]

# ------------------------------ Menus --------------------------------

MENUS = {
    Role.self_service: ["Status", "Assign", "Return", "Journey Details"],
    Role.administrator: ["Assign", "Return", "Status", "Journey Details"],
}

UNKNOWN_COMMAND = "Unknown command. Please use the available commands."

START_MESSAGES = {
    Role.self_service: (
        "🚗🚦 WELCOME TO THE VEHICLE ASSIGNMENT BOT! 🚦🚗\n\n"
        "Use the commands below to manage vehicle assignments:\n"
        "────────────────────────────\n\n"
        "1️⃣ /status - Check the current status of all vehicles.\n\n"
        "2️⃣ /assign - Assign a vehicle to yourself and set a destination.\n\n"
        "3️⃣ /return - Return your vehicle to the {home}.\n\n"
        "4️⃣ /journey - View your journey details.\n\n"
        "────────────────────────────\n"
        "👉 Ready to go? Just type a command to get started! 😊"
    ),
    Role.administrator: (
        "🚗🚦 WELCOME ADMIN !! 🚦🚗\n\n"
        "Use the commands below to manage vehicles:\n"
        "────────────────────────────\n\n"
        "1️⃣ /status - Check the current status of all vehicles.\n\n"
        "2️⃣ /return - Return a vehicle to the {home}.\n\n"
        "3️⃣ /assign - Assign a vehicle to a user.\n\n"
        "4️⃣ /journey - View a user's journey details.\n\n"
        "────────────────────────────\n\n"
        "👉 Ready to go? Just type a command to get started! 😊"
    ),
}


def start_message(role: Role, home_base: str) -> str:
    return START_MESSAGES[role].format(home=home_base)


def main_keyboard(role: Role) -> ReplyKeyboardMarkup:
    labels = MENUS[role]
    rows = [labels[i:i + 2] for i in range(0, len(labels), 2)]
    return ReplyKeyboardMarkup(
        keyboard=[[KeyboardButton(text=label) for label in row] for row in rows],
        resize_keyboard=True,
    )


# ---------------------------- Keyboards ------------------------------


def prompt_keyboard(prompt: Prompt) -> InlineKeyboardMarkup:
    """Inline picker for a workflow prompt, two buttons per row."""
    pick = PICKERS[prompt.state]
    builder = InlineKeyboardBuilder()
    for option in prompt.options:
        builder.button(text=option.label, callback_data=pick(option.value))
    builder.adjust(2)
    return builder.as_markup()


def return_keyboard(prompt: Prompt) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    for option in prompt.options:
        builder.button(text=option.label, callback_data=ReturnPick(name=option.value))
    builder.adjust(1)
    return builder.as_markup()


def user_keyboard(users: list[User]) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    for user in users:
        builder.button(text=user.name, callback_data=JourneyUserPick(user_id=user.id))
    builder.adjust(2)
    return builder.as_markup()


def day_keyboard(user_id: int) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    for offset, label in enumerate(DAY_LABELS):
        builder.button(text=label, callback_data=JourneyDayPick(user_id=user_id, offset=offset))
    builder.adjust(1)
    return builder.as_markup()


# ----------------------------- Тексты --------------------------------


def human_datetime(dt: datetime | None, tz: str) -> str:
    """
    UTC-время из БД -> строка в часовом поясе парка:
    06.10.2025 14:42:05
    """
    if dt is None:
        return "N/A"
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    local = dt.astimezone(ZoneInfo(tz))
    return local.strftime("%d.%m.%Y %H:%M:%S")


def status_table(vehicles: list[Vehicle], tz: str, home_base: str) -> str:
    """Машины в пути сверху, затем стоящие на базе; внутри групп по имени."""
    ordered = sorted(vehicles, key=lambda v: (not v.in_use, v.name))

    lines = [
        "Vehicle         | Destination          | User       | Assigned At",
        "------------------------------------------------------------------",
    ]
    for v in ordered:
        name = v.name.ljust(15)
        destination = (v.current_destination or home_base).ljust(20)
        user = (v.current_employee or "Available").ljust(10)
        assigned_at = human_datetime(v.assigned_at, tz)
        if v.in_use:
            lines.append(f"🚗{name.upper()} | {destination.upper()} | {user.upper()} | {assigned_at}")
        else:
            lines.append(f"{name} | {destination} | {user} | {assigned_at}")

    return "<b>Vehicle Status:</b>\n\n<pre>" + escape("\n".join(lines)) + "</pre>"


def journey_table(report: JourneyReport, tz: str, own: bool = False) -> str:
    if report.empty:
        return "No journeys found for the selected date."

    title = "Your Journey Details" if own else "Journey Details"
    lines = [
        "Vehicle       | Destination       | Assigned At         | Returned At         | Total Time",
        "--------------------------------------------------------------------------------------------",
    ]
    for j in report.journeys:
        returned = human_datetime(j.returned_at, tz) if j.returned_at else "In Progress"
        lines.append(
            f"{j.vehicle_name.ljust(13)} | {(j.destination or 'N/A').ljust(17)} | "
            f"{human_datetime(j.assigned_at, tz).ljust(19)} | {returned.ljust(19)} | "
            f"{j.total_time or 'N/A'}"
        )

    header = f"<b>{title} for {report.day.strftime('%a %b %d %Y')}:</b>\n\n"
    return header + "<pre>" + escape("\n".join(lines)) + "</pre>"


def _with_warnings(text: str, warnings: list[str]) -> str:
    if warnings:
        text += "\n\n" + "\n".join(f"⚠️ {w}" for w in warnings)
    return text


def assignment_reply(result: AssignmentResult, tz: str) -> str:
    text = (
        f'✅ Vehicle "{result.vehicle_name}" has been assigned to "{result.assignee_name}" '
        f'for "{result.destination}" at {human_datetime(result.assigned_at, tz)}.'
    )
    return _with_warnings(text, result.warnings)


def return_reply(result: ReturnResult, tz: str, home_base: str) -> str:
    text = (
        f"🚗 Vehicle {result.vehicle_name} has been returned to the {home_base} "
        f"at {human_datetime(result.returned_at, tz)}.\n\n"
        f"Time spent: {result.elapsed.humanize()}."
    )
    return _with_warnings(text, result.warnings)
