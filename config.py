import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('true', '1', 'yes', 'on')


class Config:
    SECRET_KEY = os.environ.get('SESSION_SECRET') or os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    WTF_CSRF_ENABLED = True
    WTF_CSRF_TIME_LIMIT = None

    GOOGLE_APPLICATION_CREDENTIALS = os.environ.get('GOOGLE_APPLICATION_CREDENTIALS', './firebase-service-account.json')
    FIREBASE_PROJECT_ID = os.environ.get('FIREBASE_PROJECT_ID', '')
    FRONTEND_URL = os.environ.get('FRONTEND_URL', 'https://kpitalc.netlify.app')

    # Deadlines (seconds) for every document read/write and every FCM call
    FIRESTORE_TIMEOUT = float(os.environ.get('FIRESTORE_TIMEOUT', 10))
    FCM_HTTP_TIMEOUT = float(os.environ.get('FCM_HTTP_TIMEOUT', 30))

    FCM_BATCH_SIZE = int(os.environ.get('FCM_BATCH_SIZE', 500))
    FCM_SEND_CONCURRENCY = int(os.environ.get('FCM_SEND_CONCURRENCY', 1))
    LOOKUP_WORKERS = int(os.environ.get('LOOKUP_WORKERS', 32))

    KPI_LOOKBACK_DAYS = int(os.environ.get('KPI_LOOKBACK_DAYS', 14))
    # Comma-separated roles allowed to stand in for a missing evaluator;
    # empty lets any user with a token and matching centers do it
    KPI_FALLBACK_ROLES = os.environ.get('KPI_FALLBACK_ROLES', '')

    SCHEDULER_TIMEZONE = os.environ.get('SCHEDULER_TIMEZONE', 'UTC')
    KPI_REMINDER_CRON = os.environ.get('KPI_REMINDER_CRON', '0 14 * * fri')
    KPI_REMINDER_TIMEZONE = os.environ.get('KPI_REMINDER_TIMEZONE', 'Asia/Kolkata')
    OWNER_REMINDER_CRON = os.environ.get('OWNER_REMINDER_CRON', '0 16 * * *')
    SAME_DAY_REMINDER_CRON = os.environ.get('SAME_DAY_REMINDER_CRON', '0 8 * * *')
    OVERDUE_REMINDER_CRON = os.environ.get('OVERDUE_REMINDER_CRON', '0 9 * * mon')
    CALENDAR_DIGEST_CRON = os.environ.get('CALENDAR_DIGEST_CRON', '0 7 * * *')

    ENABLE_SCHEDULER = _env_bool('ENABLE_SCHEDULER', True)
    ENABLE_EVENT_LISTENER = _env_bool('ENABLE_EVENT_LISTENER', True)

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class TestConfig(Config):
    TESTING = True
    WTF_CSRF_ENABLED = False
    ENABLE_SCHEDULER = False
    ENABLE_EVENT_LISTENER = False
    LOOKUP_WORKERS = 4
