# -*- coding: utf-8 -*-
"""
Process entrypoint: the HTTP app plus the background workers.

    gunicorn -w 1 starfall.main:app      (one worker: the schedulers are in-process)
    python -m starfall.main
"""
import atexit
import os

from starfall.factory import create_app
from starfall.jobs.scheduler import start_scheduler, stop_scheduler

app = create_app()

if start_scheduler(app) is not None:
    atexit.register(stop_scheduler, app)


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", "8080")))
