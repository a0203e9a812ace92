from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # URL подключения к БД (postgres://, mysql+pymysql://, sqlite:///...)
    DATABASE_URL: str = "sqlite:///fleet.db"

    # Бот сотрудников (самообслуживание) и бот администратора
    TELEGRAM_BOT_TOKEN: str | None = None
    ADMIN_BOT_TOKEN: str | None = None

    # Чат администратора, куда приходят уведомления от бота сотрудников
    ADMIN_TELEGRAM_ID: str | None = None

    # Кому разрешён доступ к админ-боту, через запятую.
    # Пусто — пускаем всех (удобно для локального теста)
    ADMIN_TELEGRAM_IDS: str = ""

    # Название базы, куда возвращаются машины
    HOME_BASE: str = "pharmacy"

    # Часовой пояс для календарных дат в отчётах о поездках
    TIMEZONE: str = "UTC"

    # Через сколько секунд бездействия сбрасывается незавершённый диалог
    SESSION_TTL_SECONDS: int = 3600

    # Список доменов для CORS; пусто — '*'
    CORS_ORIGINS: str = ""

    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "fleetbot_error.log"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def admin_ids(self) -> set[int]:
        return {int(x) for x in self.ADMIN_TELEGRAM_IDS.split(",") if x.strip()}


# Экземпляр настроек (автоматически подтянет переменные из env)
settings = Settings()
