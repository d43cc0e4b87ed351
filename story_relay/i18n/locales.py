"""
Message tables for every language the bot speaks.

Messages containing %-placeholders are formatted by `get_message` when
arguments are supplied.
"""

from typing import Any, Optional

DEFAULT_LANGUAGE = "en"

LOCALES: dict[str, dict[str, str]] = {
    "en": {
        "language_name": "🇺🇸 English",
        "welcome": "🇺🇸 Welcome! Please choose your language:",
        "registered": "Language set to English 🇺🇸",
        "instruction": "**You can send:**\n- `username` or `@username`\n- `+1234567890`",
        "processing": "⏳ Processing...",
        "downloading": "⬇️ Found %d stories. Downloading...",
        "no_stories": "No active stories found for %s.",
        "story_from": "Story from %s",
        "download_error": "⚠️ Sent %d of %d stories. Some stories could not be delivered.",
        "fetch_error": "❌ Could not fetch stories right now. Please try again later.",
        "cooldown": "Please wait %d seconds between downloads.",
        "daily_limit": "Daily limit reached (%d/%d). Upgrade to Premium for unlimited downloads!",
        "denied": "🚫 %s",
        "system_error": "⚠️ System error checking limits. Please try again later.",
        "generic_error": "An error occurred. Please try again.",
        "language_error": "Error updating language",
    },
    "uz": {
        "language_name": "🇺🇿 O'zbek",
        "welcome": "🇺🇿 Xush kelibsiz! Tilni tanlang:",
        "registered": "O'zbek tili tanlandi 🇺🇿",
        "instruction": "**Yuborishingiz mumkin:**\n- `username` yoki `@username`\n- `+998901234567`",
        "processing": "⏳ Qidirilmoqda...",
        "downloading": "⬇️ %d ta hikoya topildi. Yuklanmoqda...",
        "no_stories": "%s uchun faol hikoyalar topilmadi.",
        "story_from": "%s hikoyasi",
        "download_error": "⚠️ %d / %d ta hikoya yuborildi. Ba'zilarini yetkazib bo'lmadi.",
        "fetch_error": "❌ Hozircha hikoyalarni olib bo'lmadi. Keyinroq urinib ko'ring.",
        "cooldown": "Yuklashlar orasida %d soniya kuting.",
        "daily_limit": "Kunlik limit tugadi (%d/%d). Cheksiz yuklash uchun Premium oling!",
        "denied": "🚫 %s",
        "system_error": "⚠️ Limitlarni tekshirishda xatolik. Keyinroq urinib ko'ring.",
        "generic_error": "Xatolik yuz berdi. Qayta urinib ko'ring.",
        "language_error": "Tilni yangilashda xatolik",
    },
    "ru": {
        "language_name": "🇷🇺 Русский",
        "welcome": "🇷🇺 Добро пожаловать! Выберите язык:",
        "registered": "Язык выбран: Русский 🇷🇺",
        "instruction": "**Вы можете отправить:**\n- `username` или `@username`\n- `+79001234567`",
        "processing": "⏳ Обработка...",
        "downloading": "⬇️ Найдено историй: %d. Загрузка...",
        "no_stories": "Активные истории для %s не найдены.",
        "story_from": "История от %s",
        "download_error": "⚠️ Отправлено %d из %d историй. Некоторые не удалось доставить.",
        "fetch_error": "❌ Не удалось получить истории. Попробуйте позже.",
        "cooldown": "Подождите %d секунд между загрузками.",
        "daily_limit": "Дневной лимит исчерпан (%d/%d). Купите Premium для безлимитных загрузок!",
        "denied": "🚫 %s",
        "system_error": "⚠️ Системная ошибка при проверке лимитов. Попробуйте позже.",
        "generic_error": "Произошла ошибка. Попробуйте снова.",
        "language_error": "Ошибка при смене языка",
    },
}

SUPPORTED_LANGUAGES = tuple(LOCALES)


def get_message(lang: Optional[str], key: str, *args: Any) -> str:
    """
    Looks up a message for a language, falling back to English and then to
    the key itself. Positional arguments are %-formatted into the message.
    """
    texts = LOCALES.get(lang or DEFAULT_LANGUAGE, {})
    message = texts.get(key) or LOCALES[DEFAULT_LANGUAGE].get(key) or key
    return message % args if args else message
