# -*- coding: utf-8 -*-

from flask import Blueprint, jsonify
import time

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from starfall.database import db

health_bp = Blueprint('health', __name__)


@health_bp.route('/health', methods=['GET', 'HEAD'])
@health_bp.route('/healthz', methods=['GET', 'HEAD'])
def healthz():
    """Liveness check (available at both /health and /healthz)."""
    return jsonify({
        'ok': True,
        'status': 'healthy',
        'service': 'starfall',
        'timestamp': time.time()
    }), 200


@health_bp.route('/readyz', methods=['GET', 'HEAD'])
def readyz():
    """Readiness check: the database answers a trivial query."""
    try:
        db.session.execute(text("SELECT 1"))
        database_ok = True
    except SQLAlchemyError:
        db.session.rollback()
        database_ok = False

    return jsonify({
        'status': 'ready' if database_ok else 'not_ready',
        'service': 'starfall',
        'timestamp': time.time(),
        'checks': {
            'database': database_ok
        }
    }), 200 if database_ok else 503
