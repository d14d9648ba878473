"""
FastAPI main application for the Bookshelf API.
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import structlog
from bson import ObjectId
from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorClient
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

import api.database as db_module
from api.auth import (
    CurrentUser, PasswordHasher, TokenManager, get_current_user,
    get_password_hasher, get_token_manager
)
from api.config import config as api_config
from api.database import APIDatabaseService, get_db_service
from api.errors import (
    AccessDeniedError, AccountInactiveError, APIError,
    InvalidCredentialsError, ValidationFailedError
)
from api.models import (
    BookCreate, BookEnvelope, BookSearchResponse, BookUpdate,
    CollectionQueryParams, CollectionResponse, ErrorResponse, FieldError,
    HealthResponse, LoginRequest, LoginResponse, MessageResponse,
    PasswordResetRequest, SearchQueryParams, UserCreate, UserEnvelope
)
from utilities.config import config
from utilities.logger import AuditLogger, setup_logging

logger = structlog.get_logger(__name__)
audit = AuditLogger("api.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.get_log_file_path(),
        debug=config.debug
    )
    logger.info("Starting Bookshelf API")

    client = AsyncIOMotorClient(config.mongodb_url, tz_aware=True)
    try:
        database = client[config.mongodb_database]
        await database.command("ping")
        logger.info("Database connection established", database=config.mongodb_database)

        service = APIDatabaseService(
            database,
            users_collection=config.users_collection,
            books_collection=config.books_collection,
            use_transactions=config.mongodb_transactions
        )
        await service.create_indexes()
        db_module.db_service = service
    except Exception as e:
        logger.error("Failed to connect to database", error=str(e))
        client.close()
        raise

    yield

    logger.info("Shutting down Bookshelf API")
    db_module.db_service = None
    client.close()


app = FastAPI(
    title=api_config.api_title,
    description="""
    REST API for a personal book catalog.

    ## Features

    * **Books**: create, read, update, delete and search your own books
    * **Users**: registration, login and password reset
    * **Collection**: paginated and sortable listing of your books

    ## Authentication

    Every endpoint except registration, login and the health check requires
    a bearer token obtained from `POST /users`:

    ```
    Authorization: Bearer your_token_here
    ```
    """,
    version=api_config.api_version,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=api_config.cors_origins,
    allow_credentials=api_config.cors_allow_credentials,
    allow_methods=api_config.cors_allow_methods,
    allow_headers=api_config.cors_allow_headers,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "Request handled",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - start) * 1000, 2),
        client=request.client.host if request.client else "unknown"
    )
    return response


def _field_errors(errors) -> list:
    """Flatten pydantic error entries into field/message pairs."""
    field_errors = []
    for error in errors:
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        message = error.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        field_errors.append(FieldError(field=".".join(location) or "body", message=message))
    return field_errors


def _validation_failed(exc: ValidationError, message: str = "Invalid data.") -> ValidationFailedError:
    return ValidationFailedError(message, errors=_field_errors(exc.errors()))


# Exception handlers
@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    """Render domain errors with their code."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            message=exc.message,
            code=exc.code,
            errors=exc.errors
        ).model_dump(exclude_none=True)
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies and query strings are validation errors, not 422s."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(
            message="Invalid data.",
            code=ValidationFailedError.code,
            errors=_field_errors(exc.errors())
        ).model_dump(exclude_none=True)
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    code = "NOT_FOUND" if exc.status_code == status.HTTP_404_NOT_FOUND else "HTTP_ERROR"
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(message=str(exc.detail), code=code).model_dump(exclude_none=True),
        headers=getattr(exc, "headers", None)
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error("Unhandled exception", error=str(exc), path=request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            message="Internal server error.",
            code="INTERNAL_ERROR",
            detail=str(exc) if api_config.debug else None
        ).model_dump(exclude_none=True)
    )


# Health check endpoint (no authentication required)
@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint."""
    db_status = "unavailable"
    if db_module.db_service:
        health_info = await db_module.db_service.health_check()
        db_status = health_info.get("status", "unknown")

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        timestamp=datetime.now(timezone.utc),
        version=api_config.api_version,
        database_status=db_status
    )


# Books endpoints
@app.post("/books", response_model=BookEnvelope, status_code=status.HTTP_201_CREATED, tags=["Books"])
async def create_book(
    book: BookCreate,
    user: CurrentUser = Depends(get_current_user),
    db_service: APIDatabaseService = Depends(get_db_service)
):
    """Create a book owned by the caller."""
    created = await db_service.create_book(user.id, book)
    return BookEnvelope(message="Book created successfully.", code="BOOK_CREATED", book=created)


@app.get("/books", response_model=BookSearchResponse, tags=["Books"])
async def search_books(
    q: Optional[str] = None,
    query: Optional[str] = None,
    page: int = 1,
    limit: int = Query(default=api_config.default_page_size),
    user: CurrentUser = Depends(get_current_user),
    db_service: APIDatabaseService = Depends(get_db_service)
):
    """
    Search the caller's books.

    - **q**: Search term matched against title, author and description
      (and the exact price when numeric)
    - **page**: Page number (starts from 1)
    - **limit**: Items per page (1-100)
    """
    try:
        query_params = SearchQueryParams(query=q or query or "", page=page, limit=limit)
    except ValidationError as e:
        raise _validation_failed(e, "Invalid search parameters.")

    books, pagination = await db_service.search_books(user.id, query_params)
    return BookSearchResponse(
        message="Search completed successfully.",
        books=books,
        pagination=pagination,
        search_query=query_params.query
    )


@app.get("/books/{book_id}", response_model=BookEnvelope, tags=["Books"])
async def get_book(
    book_id: str,
    user: CurrentUser = Depends(get_current_user),
    db_service: APIDatabaseService = Depends(get_db_service)
):
    """Get one of the caller's books by ID."""
    book = await db_service.get_book(user.id, book_id)
    return BookEnvelope(message="Book found.", book=book)


@app.put("/books/{book_id}", response_model=BookEnvelope, tags=["Books"])
async def update_book(
    book_id: str,
    changes: BookUpdate,
    user: CurrentUser = Depends(get_current_user),
    db_service: APIDatabaseService = Depends(get_db_service)
):
    """Partially update one of the caller's books."""
    book = await db_service.update_book(user.id, book_id, changes)
    return BookEnvelope(message="Book updated successfully.", code="BOOK_UPDATED", book=book)


@app.delete("/books/{book_id}", response_model=MessageResponse, tags=["Books"])
async def delete_book(
    book_id: str,
    user: CurrentUser = Depends(get_current_user),
    db_service: APIDatabaseService = Depends(get_db_service)
):
    """Delete one of the caller's books."""
    await db_service.delete_book(user.id, book_id)
    return MessageResponse(message="Book deleted successfully.", code="BOOK_DELETED")


# Users endpoints
@app.post("/users/create", response_model=UserEnvelope, status_code=status.HTTP_201_CREATED, tags=["Users"])
async def register(
    payload: UserCreate,
    db_service: APIDatabaseService = Depends(get_db_service),
    hasher: PasswordHasher = Depends(get_password_hasher)
):
    """Register a new user."""
    password_hash = await run_in_threadpool(hasher.hash_password, payload.password)
    user = await db_service.create_user(payload.username, password_hash)
    return UserEnvelope(message="User created successfully.", code="USER_CREATED", user=user)


@app.post("/users", response_model=LoginResponse, tags=["Users"])
async def login(
    payload: LoginRequest,
    db_service: APIDatabaseService = Depends(get_db_service),
    hasher: PasswordHasher = Depends(get_password_hasher),
    tokens: TokenManager = Depends(get_token_manager)
):
    """Exchange a username and password for a bearer token."""
    user = await db_service.get_user_by_username(payload.username)

    if user is None:
        await run_in_threadpool(hasher.dummy_verify)
        audit.log_auth_failure(InvalidCredentialsError.code, username=payload.username)
        raise InvalidCredentialsError()

    verified = await run_in_threadpool(hasher.verify_password, payload.password, user.get("password_hash", ""))
    if not verified:
        audit.log_auth_failure(InvalidCredentialsError.code, username=payload.username)
        raise InvalidCredentialsError()

    if not user.get("is_active", True):
        audit.log_auth_failure(AccountInactiveError.code, username=payload.username)
        raise AccountInactiveError()

    user_id = str(user["_id"])
    token = tokens.issue_token(user_id, user["username"])
    logger.info("User logged in", user_id=user_id)

    return LoginResponse(
        message="Login successful.",
        token=token,
        user={"id": user_id, "username": user["username"], "is_active": True}
    )


@app.put("/users/reset", response_model=MessageResponse, tags=["Users"])
async def reset_password(
    payload: PasswordResetRequest,
    user: CurrentUser = Depends(get_current_user),
    db_service: APIDatabaseService = Depends(get_db_service),
    hasher: PasswordHasher = Depends(get_password_hasher)
):
    """Replace the caller's password. The ID must be the caller's own."""
    if ObjectId(payload.id) != ObjectId(user.id):
        audit.log_auth_failure(AccessDeniedError.code, user_id=user.id)
        raise AccessDeniedError("You can only reset your own password.")

    password_hash = await run_in_threadpool(hasher.hash_password, payload.new_password)
    await db_service.update_password(user.id, password_hash)
    return MessageResponse(message="Password reset successfully.", code="PASSWORD_RESET_SUCCESS")


@app.get("/users", response_model=CollectionResponse, tags=["Users"])
async def get_my_collection(
    page: int = 1,
    limit: int = Query(default=api_config.default_page_size),
    sort_by: str = Query(default="createdAt", alias="sortBy"),
    sort_order: str = Query(default="desc", alias="sortOrder"),
    user: CurrentUser = Depends(get_current_user),
    db_service: APIDatabaseService = Depends(get_db_service)
):
    """
    Get the caller's book collection.

    - **page**: Page number (starts from 1)
    - **limit**: Items per page, capped at 100
    - **sortBy**: createdAt, updatedAt, title, author, price, publishedDate, pages
    - **sortOrder**: asc or desc
    """
    try:
        query_params = CollectionQueryParams(
            page=page,
            limit=min(limit, api_config.max_page_size),
            sort_by=sort_by,
            sort_order=sort_order
        )
    except ValidationError as e:
        raise _validation_failed(e, "Invalid collection parameters.")

    books, pagination = await db_service.get_collection(user.id, query_params)
    return CollectionResponse(
        message="Book collection retrieved successfully.",
        books=books,
        pagination=pagination
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host=api_config.host,
        port=api_config.port,
        reload=True,
        log_level="info"
    )
