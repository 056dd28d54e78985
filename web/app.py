"""Quart app factory for the cron endpoint."""

import structlog
from quart import Quart
from config.settings import settings

log = structlog.get_logger(__name__)


def create_app(runner=None) -> Quart:
    """Create the web app. Without a runner, one is wired to the database at startup."""
    app = Quart(__name__)
    app.proactive_runner = runner  # type: ignore[attr-defined]
    app.push_provider = None  # type: ignore[attr-defined]

    from web.routes.cron import cron_bp

    app.register_blueprint(cron_bp, url_prefix="/cron")

    @app.before_serving
    async def startup() -> None:
        if app.proactive_runner is not None:  # type: ignore[attr-defined]
            return
        from notifications.push import ExpoPushProvider
        from scheduler.proactive import build_runner
        from storage.database import get_pool, run_migrations

        pool = await get_pool()
        await run_migrations(pool)
        app.push_provider = ExpoPushProvider()  # type: ignore[attr-defined]
        app.proactive_runner = build_runner(pool, app.push_provider)  # type: ignore[attr-defined]
        log.info("proactive_runner_ready")

    @app.after_serving
    async def shutdown() -> None:
        from storage.database import close_pool

        if app.push_provider is not None:  # type: ignore[attr-defined]
            await app.push_provider.close()  # type: ignore[attr-defined]
            await close_pool()

    @app.route("/health")
    async def health():
        return {"status": "ok"}, 200

    return app


async def start_web(runner=None) -> None:
    """Serve the cron endpoint."""
    app = create_app(runner=runner)
    log.info("starting_web", port=settings.web_port)
    await app.run_task(host="0.0.0.0", port=settings.web_port)
