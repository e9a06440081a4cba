import os
from flask import Flask


def create_app():
    app = Flask(__name__)

    from . import datastore_pg as _pg
    if not _pg.database_url():
        raise RuntimeError(
            "DATABASE_URL (or PORTAL_DATABASE_URL) is required; the portal stores everything in PostgreSQL."
        )

    # Initialize connection pool early (optional; direct connect works if pool init fails)
    try:
        try:
            minconn = int(os.environ.get("DB_POOL_MIN", "1"))
        except ValueError:
            minconn = 1
        try:
            maxconn = int(os.environ.get("DB_POOL_MAX", "10"))
        except ValueError:
            maxconn = 10
        _pg.init_pool(minconn=minconn, maxconn=maxconn)
    except Exception:  # pragma: no cover
        app.logger.exception("PostgreSQL pool initialization failed; continuing without pool")

    from . import routes
    app.register_blueprint(routes.bp)
    app.logger.info("Portal API registered")

    return app


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    create_app().run(host='0.0.0.0', port=port)
