"""
Central constants for the Stable CRM application.
"""
from __future__ import annotations

# User roles, least to most privileged
ROLE_OBSERVER = "observer"
ROLE_INSTRUCTOR = "instructor"
ROLE_ADMINISTRATOR = "administrator"
USER_ROLES = (ROLE_OBSERVER, ROLE_INSTRUCTOR, ROLE_ADMINISTRATOR)

HORSE_STATUSES = ("active", "rest", "unavailable")

# Prefix given to a horse that cannot be removed because completed lessons reference it
DELETED_HORSE_MARKER = "[УДАЛЕНО] "

LESSON_TYPES = ("hippotherapy", "beginner_riding", "advanced_riding", "walk", "mounted_archery")
LESSON_STATUSES = ("planned", "completed", "cancelled")
PAYMENT_TYPES = ("cash", "subscription", "certificate")

CERTIFICATE_STATUSES = ("active", "used", "expired")
SUBSCRIPTION_STATUSES = ("active", "expired", "used")

DEFAULT_LESSON_DURATION = 45  # minutes
DEFAULT_SUBSCRIPTION_MONTHS = 6

# Display labels (calendar feed, exports)
LESSON_TYPE_LABELS = {
    "hippotherapy": "Иппотерапия",
    "beginner_riding": "Верховая езда новичок",
    "advanced_riding": "Верховая езда опытный",
    "walk": "Прогулка",
    "mounted_archery": "Конная стрельба из лука",
}

LESSON_STATUS_LABELS = {
    "planned": "Запланировано",
    "completed": "Завершено",
    "cancelled": "Отменено",
}

STABLE_NAME = "Солнечная Поляна"
CALENDAR_UID_DOMAIN = "sunnymeadow.ru"
CALENDAR_TIMEZONE = "Europe/Moscow"

# Landing page blocks created by scripts/init_db.py
DEFAULT_LANDING_SECTIONS = ("hero", "about", "services", "prices", "contacts")

# Default lesson price (RUB) by payment type when the request omits cost
DEFAULT_LESSON_COSTS = {
    "cash": "1500",
    "subscription": "1250",
    "certificate": "1500",
}
