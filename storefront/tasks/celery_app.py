from celery import Celery
from celery.schedules import crontab
from storefront.core.config import settings

def make_celery():
    """Создание и настройка Celery приложения"""

    celery_app = Celery(
        "storefront",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
        include=[
            "storefront.tasks.marketplace_tasks",
        ]
    )

    celery_app.conf.update(
        task_serializer=settings.CELERY_TASK_SERIALIZER,
        result_serializer=settings.CELERY_RESULT_SERIALIZER,
        accept_content=settings.CELERY_ACCEPT_CONTENT,
        timezone=settings.CELERY_TIMEZONE,
        enable_utc=settings.CELERY_ENABLE_UTC,

        # Настройки задач
        task_track_started=True,
        task_time_limit=30 * 60,  # 30 минут
        task_soft_time_limit=25 * 60,  # 25 минут

        # Настройки брокера
        broker_connection_retry_on_startup=True,
        broker_connection_max_retries=10,

        # Результаты
        result_expires=3600,  # 1 час

        # Расписание задач
        beat_schedule={
            # Обновление токена маркетплейса каждые 6 часов
            'refresh-marketplace-token': {
                'task': 'storefront.tasks.marketplace_tasks.refresh_marketplace_token',
                'schedule': crontab(minute=0, hour='*/6'),
                'args': (),
                'options': {'queue': 'sync'}
            },

            # Пересинхронизация каталога каждые 6 часов в :30
            'resync-catalog': {
                'task': 'storefront.tasks.marketplace_tasks.resync_catalog',
                'schedule': crontab(minute=30, hour='*/6'),
                'args': (),
                'options': {'queue': 'sync'}
            },

            # Опрос статусов заказов каждый час
            'poll-order-statuses': {
                'task': 'storefront.tasks.marketplace_tasks.poll_order_statuses',
                'schedule': crontab(minute=0, hour='*/1'),
                'args': (),
                'options': {'queue': 'sync'}
            },

            # Проверка учетных данных раз в сутки в 3:00
            'check-marketplace-credentials': {
                'task': 'storefront.tasks.marketplace_tasks.check_marketplace_credentials',
                'schedule': crontab(minute=0, hour=3),
                'args': (),
                'options': {'queue': 'monitoring'}
            },
        },

        # Очереди
        task_routes={
            'storefront.tasks.marketplace_tasks.check_marketplace_credentials': {'queue': 'monitoring'},
            'storefront.tasks.marketplace_tasks.*': {'queue': 'sync'},
        },

        # Работники
        worker_prefetch_multiplier=1,
        worker_max_tasks_per_child=1000,
        worker_concurrency=4
    )

    return celery_app

# Создаем экземпляр Celery
celery_app = make_celery()
