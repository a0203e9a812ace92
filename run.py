# run.py
import asyncio
import contextlib
import os

from uvicorn.config import Config
from uvicorn.server import Server

# импортируем уже существующее FastAPI-приложение
from fleetbot.main import app
from fleetbot.bots import start_bots
from fleetbot.db import init_db
from fleetbot.logger import get_logger

logger = get_logger("run")


def log_loop_exception(loop, context) -> None:
    # Необработанные ошибки в задачах пишем в лог, процесс живёт дальше
    exc = context.get("exception")
    logger.error(f"Unhandled loop error: {context.get('message')}", exc_info=exc)


# ==== запуск Uvicorn внутри того же процесса ====
async def run_uvicorn() -> None:
    port = int(os.environ.get("PORT", "3000"))  # Render прокидывает PORT
    config = Config(
        app=app,
        host="0.0.0.0",
        port=port,
        log_level="info",
        # reload=False — обязателен на проде/Render
    )
    server = Server(config)
    await server.serve()


async def main() -> None:
    asyncio.get_running_loop().set_exception_handler(log_loop_exception)
    init_db()

    # Поднимаем API и обоих ботов одновременно.
    api_task = asyncio.create_task(run_uvicorn(), name="uvicorn")
    bots_task = asyncio.create_task(start_bots(), name="bots")

    # Ждём первую ошибку из задач, вторую аккуратно гасим
    done, pending = await asyncio.wait(
        {api_task, bots_task},
        return_when=asyncio.FIRST_EXCEPTION,
    )
    for task in done:
        if task.exception():
            logger.error(f"{task.get_name()} stopped", exc_info=task.exception())
    for task in pending:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


if __name__ == "__main__":
    asyncio.run(main())
