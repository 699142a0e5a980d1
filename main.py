import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import get_settings
from contact_store import SqliteContactStore
from db_models import IdentifyRequest, FinalResponse
from db_setup import init_db, unit_of_work
from exceptions import ContactServiceError, InvalidInputError
from reconciliation import identify_contact

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning("Invalid request to %s: %s", request.url.path, exc.errors())
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request data", "details": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(InvalidInputError)
async def invalid_input_handler(request: Request, exc: InvalidInputError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request data", "details": [{"msg": exc.message}]},
    )


@app.exception_handler(ContactServiceError)
async def contact_service_error_handler(request: Request, exc: ContactServiceError) -> JSONResponse:
    logger.error("Contact service error on %s: %s", request.url.path, exc.message, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "message": "An unexpected error occurred while processing the request",
        },
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        return JSONResponse(
            status_code=404,
            content={"error": "Not Found", "message": "The requested endpoint does not exist"},
        )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s", request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal Server Error", "message": "An unexpected error occurred"},
    )


@app.get("/")
async def root():
    return {"message": "Bitespeed API is up"}


@app.get("/health")
async def health():
    return {
        "status": "OK",
        "message": "Identity reconciliation service is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.post("/identify", response_model=FinalResponse)
def identify(request: IdentifyRequest):
    email = str(request.email) if request.email else None
    phone = request.phoneNumber

    with unit_of_work() as conn:
        contact = identify_contact(SqliteContactStore(conn), email, phone)

    return FinalResponse(contact=contact)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
