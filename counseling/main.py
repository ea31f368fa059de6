import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from counseling.core import config
from counseling.database import Base, engine
from counseling.models import (  # noqa: F401
    availability,
    chat_message,
    counseling_session,
    counselor_setting,
    note,
    notification,
    user,
)
from counseling.routes import (
    auth_routes,
    availability_routes,
    chat_routes,
    dashboard_routes,
    note_routes,
    notification_routes,
    session_routes,
    user_routes,
)

logging.basicConfig(level=config.LOG_LEVEL)

app = FastAPI(title='Counseling Scheduler API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


def validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return 'Invalid request.'

    error = errors[0]
    field = str(error['loc'][-1]) if error.get('loc') else 'request'
    if error.get('type') == 'missing':
        return f'{field} is required.'

    message = str(error.get('msg', 'Invalid request.'))
    return message.removeprefix('Value error, ')


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={'message': exc.detail},
        headers=getattr(exc, 'headers', None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={'message': validation_message(exc)})


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'Counseling Scheduler API Running'}


app.include_router(auth_routes.router, prefix='/api/auth')
app.include_router(session_routes.router, prefix='/api')
app.include_router(availability_routes.router, prefix='/api')
app.include_router(chat_routes.router, prefix='/api')
app.include_router(notification_routes.router, prefix='/api')
app.include_router(note_routes.router, prefix='/api')
app.include_router(user_routes.router, prefix='/api')
app.include_router(dashboard_routes.router, prefix='/api')
