# -*- coding: utf-8 -*-
"""
Background scheduling for the coordinator's recurring jobs.

Runs the delivery and payment-watch workers on an APScheduler
BackgroundScheduler inside the web process. Each run gets its own app
context, and with it its own database session.
"""
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from flask import Flask

from starfall.database import db
from starfall.services.container import get_services
from starfall.services.structured_logging import get_logger

logger = get_logger('starfall.scheduler')

SESSION_PURGE_SECONDS = 600


def _in_app_context(app: Flask, name: str, fn: Callable[[], object]) -> Callable[[], None]:
    def job():
        with app.app_context():
            try:
                fn()
            except Exception:
                db.session.rollback()
                logger.exception("Scheduled job failed", job=name)
            finally:
                db.session.remove()
    job.__name__ = f"starfall_{name}"
    return job


def delivery_job():
    get_services().delivery_worker.tick()


def payment_watch_job():
    get_services().watch_worker.tick()


def session_purge_job():
    purged = get_services().sessions.purge_expired()
    if purged:
        logger.debug("Expired chat sessions purged", count=purged)


def start_scheduler(app: Flask) -> Optional[BackgroundScheduler]:
    """Start the recurring jobs unless SCHEDULER_ENABLED is off."""
    if not app.config.get("SCHEDULER_ENABLED", True):
        logger.info("Scheduler disabled")
        return None

    scheduler = BackgroundScheduler(
        timezone="UTC",
        job_defaults={"max_instances": 1, "coalesce": True, "misfire_grace_time": 30},
    )

    if app.config.get("AUTODELIVER", True):
        scheduler.add_job(
            _in_app_context(app, "delivery", delivery_job),
            "interval",
            seconds=app.config["DELIVERY_INTERVAL"],
            id="delivery",
        )
    else:
        logger.info("Automatic delivery disabled")

    services = app.extensions['starfall']
    if services.invoice_provider is not None and services.invoice_provider.supports_polling:
        scheduler.add_job(
            _in_app_context(app, "payment_watch", payment_watch_job),
            "interval",
            seconds=app.config["PAYMENT_WATCH_INTERVAL"],
            id="payment_watch",
        )

    scheduler.add_job(
        _in_app_context(app, "session_purge", session_purge_job),
        "interval",
        seconds=SESSION_PURGE_SECONDS,
        id="session_purge",
    )

    scheduler.start()
    app.extensions['scheduler'] = scheduler
    logger.info("Scheduler started", jobs=[j.id for j in scheduler.get_jobs()])
    return scheduler


def stop_scheduler(app: Flask) -> None:
    scheduler = app.extensions.pop('scheduler', None)
    if scheduler is not None:
        scheduler.shutdown(wait=False)
