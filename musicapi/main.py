from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from .config import get_settings
from .core import init_metrics
from .errors import SOMETHING_WRONG, ServiceError
from .models import create_tables
from .routes import router
import logging
from pythonjsonlogger import jsonlogger

settings = get_settings()

# setup structured logging
logger = logging.getLogger('musicapi')
handler = logging.StreamHandler()
formatter = jsonlogger.JsonFormatter('%(asctime)s %(levelname)s %(name)s %(message)s')
handler.setFormatter(formatter)
logger.addHandler(handler)
logger.setLevel(settings.log_level)

app = FastAPI(title="Music Catalog API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=['*'],
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

app.include_router(router, prefix="/api")


def _error_body(status: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={'status': status, 'error': True, 'message': message})


@app.exception_handler(ServiceError)
async def handle_service_error(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error({'msg': 'service_error', 'path': request.url.path, 'status': exc.status_code})
    return _error_body(exc.status_code, exc.message)


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException):
    return _error_body(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError):
    # report the first failing field only
    first = exc.errors()[0] if exc.errors() else {}
    field = '.'.join(str(p) for p in first.get('loc', ())[1:])
    message = first.get('msg', 'Invalid request')
    return _error_body(422, f'{field}: {message}' if field else message)


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    logger.exception('unhandled error on %s', request.url.path)
    return _error_body(500, SOMETHING_WRONG)


@app.get('/healthz')
async def healthz():
    return {'status': 'ok'}


@app.middleware('http')
async def log_requests(request: Request, call_next):
    logger.info({'msg': 'request_start', 'method': request.method, 'path': request.url.path})
    response = await call_next(request)
    logger.info({'msg': 'request_end', 'status': response.status_code})
    return response


@app.on_event("startup")
async def startup():
    await create_tables()
    # Best-effort, don't block app from starting if the exporter fails
    try:
        init_metrics(settings.metrics_port)
    except Exception as e:
        logger.warning({'msg': 'metrics_init_failed', 'error': str(e)})
