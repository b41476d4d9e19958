import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from healthsystem.core import config
from healthsystem.core.errors import register_error_handlers
from healthsystem.database import Database, select_database
from healthsystem.routes import appointment_routes, auth_routes, user_routes

logger = logging.getLogger(__name__)


def create_app(database: Database | None = None) -> FastAPI:
    config.validate_runtime_config()

    app = FastAPI(title='Healthcare Management System API')
    app.state.database = database

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=['*'],
        allow_headers=['*'],
    )
    register_error_handlers(app)

    @app.on_event('startup')
    def initialize_database() -> None:
        if app.state.database is None:
            app.state.database = select_database()
        logger.info('Database ready (%s)', app.state.database.mode)

    @app.on_event('shutdown')
    def close_database() -> None:
        if app.state.database is not None:
            app.state.database.dispose()

    @app.get('/api/health')
    def health(request: Request):
        database = request.app.state.database
        return {
            'status': 'OK',
            'message': 'Healthcare Management System API is running',
            'database': database.mode if database is not None else 'disconnected',
            'environment': config.APP_ENV,
        }

    app.include_router(auth_routes.router, prefix='/api/auth')
    app.include_router(user_routes.router, prefix='/api/users')
    app.include_router(appointment_routes.users_router, prefix='/api/users')
    app.include_router(appointment_routes.router, prefix='/api/appointments')

    return app


logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
)

app = create_app()
