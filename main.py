import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Annotated

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, get_settings
from database import DuplicateEmailError, TodoStore, User
from logging_setup import setup_logging
from schemas import (
    Credentials,
    HealthResponse,
    LoginResponse,
    MessageResponse,
    RegisterResponse,
    Todo,
    TodoCreate,
    TodoListItem,
    TodoResponse,
    TodoUpdate,
    UserOut,
)
from security import Identity, PasswordHasher, TokenError, TokenService

VERSION = "1.0.0"

logger = logging.getLogger(__name__)

# Bearer token from the Authorization header. auto_error is off so a missing
# token can be answered with our own 401 body.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/login", auto_error=False)

router = APIRouter(prefix="/api")


# --- Dependencies ---
# The store, token service and hasher are built once per app in create_app()
def get_store(request: Request) -> TodoStore:
    return request.app.state.store


def get_tokens(request: Request) -> TokenService:
    return request.app.state.tokens


def get_hasher(request: Request) -> PasswordHasher:
    return request.app.state.hasher


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


# Authentication gate: 401 when no token is sent, 403 when it doesn't verify
def get_current_identity(
    token: Annotated[str | None, Depends(oauth2_scheme)],
    tokens: Annotated[TokenService, Depends(get_tokens)],
) -> Identity:
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return tokens.verify(token)
    except TokenError as e:
        logger.info("Rejected bearer token: %s", e)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid token")


# Resolve the acting user from the token identity; the account may be gone
def get_current_user(
    identity: Annotated[Identity, Depends(get_current_identity)],
    store: Annotated[TodoStore, Depends(get_store)],
) -> User:
    user = store.find_user_by_email(identity.email)
    if user is None or user.id != identity.user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def validate_title(title: str | None, max_length: int) -> str:
    if title is None or not title.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Title is required")
    if len(title) > max_length:
        logger.warning("Rejected todo title of length %d (max %d)", len(title), max_length)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Title must be at most {max_length} characters",
        )
    return title


# --- Auth endpoints ---
@router.post("/register", status_code=status.HTTP_201_CREATED, response_model=RegisterResponse)
def register_user(
    payload: Credentials,
    store: Annotated[TodoStore, Depends(get_store)],
    hasher: Annotated[PasswordHasher, Depends(get_hasher)],
):
    if not payload.email or not payload.password:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email and password are required")

    password_hash = hasher.hash(payload.password)
    try:
        user_id = store.create_user(payload.email, password_hash)
    except DuplicateEmailError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")

    logger.info("Registered user id=%s", user_id)
    return {"message": "Registration complete", "userId": user_id}


@router.post("/login", response_model=LoginResponse)
def login(
    payload: Credentials,
    store: Annotated[TodoStore, Depends(get_store)],
    hasher: Annotated[PasswordHasher, Depends(get_hasher)],
    tokens: Annotated[TokenService, Depends(get_tokens)],
):
    if not payload.email or not payload.password:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email and password are required")

    # Unknown email and wrong password get the same answer
    user = store.find_user_by_email(payload.email)
    if user is None:
        hasher.dummy_verify()
        valid = False
    else:
        valid = hasher.verify(payload.password, user.password_hash)
    if not valid:
        logger.info("Failed login attempt")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = tokens.issue(user.id, user.email)
    return {
        "message": "Login successful",
        "token": token,
        "user": UserOut.model_validate(user),
    }


# --- Todo endpoints ---
@router.get("/todos", response_model=list[TodoListItem])
def read_todos(
    user: Annotated[User, Depends(get_current_user)],
    store: Annotated[TodoStore, Depends(get_store)],
):
    return store.list_tasks(user.id)


@router.post("/todos", status_code=status.HTTP_201_CREATED, response_model=TodoResponse)
def create_todo(
    payload: TodoCreate,
    user: Annotated[User, Depends(get_current_user)],
    store: Annotated[TodoStore, Depends(get_store)],
    settings: Annotated[Settings, Depends(get_app_settings)],
):
    title = validate_title(payload.title, settings.max_title_length)
    task = store.create_task(user.id, title)
    logger.info("Created todo id=%s user=%s", task.id, user.id)
    return {"message": "Todo created", "todo": Todo.model_validate(task)}


@router.put("/todos/{todo_id}", response_model=TodoResponse)
def update_todo(
    todo_id: int,
    payload: TodoUpdate,
    user: Annotated[User, Depends(get_current_user)],
    store: Annotated[TodoStore, Depends(get_store)],
    settings: Annotated[Settings, Depends(get_app_settings)],
):
    # Only fields present (and non-null) in the request are written
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "title" in changes:
        validate_title(changes["title"], settings.max_title_length)

    task = store.update_task(todo_id, user.id, **changes)
    if task is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Todo not found")

    logger.info("Updated todo id=%s user=%s fields=%s", todo_id, user.id, sorted(changes))
    return {"message": "Todo updated", "todo": Todo.model_validate(task)}


@router.delete("/todos/{todo_id}", response_model=MessageResponse)
def delete_todo(
    todo_id: int,
    user: Annotated[User, Depends(get_current_user)],
    store: Annotated[TodoStore, Depends(get_store)],
):
    if store.delete_task(todo_id, user.id) == 0:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Todo not found")

    logger.info("Deleted todo id=%s user=%s", todo_id, user.id)
    return {"message": "Todo deleted"}


@router.get("/health", response_model=HealthResponse)
def health(store: Annotated[TodoStore, Depends(get_store)]):
    if not store.ping():
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"ok": False, "db": False, "message": "Database connection failed"},
        )
    return {"ok": True, "db": True, "message": "Server is running"}


# --- Error handlers ---
# Every error body has the shape {"error": message}
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail
    if exc.status_code == status.HTTP_404_NOT_FOUND and detail == "Not Found":
        detail = "Requested resource not found"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.debug("Invalid request to %s: %s", request.url.path, exc.errors())
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Invalid request"})


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.settings
    app.state.store = TodoStore(settings.database_url)
    try:
        yield
    finally:
        logger.info("Shutting down")
        app.state.store.close()


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    app = FastAPI(title="QA Todo API", version=VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.tokens = TokenService(
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        expires=timedelta(hours=settings.token_expire_hours),
    )
    app.state.hasher = PasswordHasher(rounds=settings.bcrypt_rounds)

    # Configure CORS so browser and mobile clients can reach the API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # Root endpoint: service banner
    @app.get("/")
    def read_root():
        return {
            "message": "QA Todo API server",
            "version": VERSION,
            "endpoints": [
                "POST /api/register - register",
                "POST /api/login - log in",
                "GET /api/todos - list todos",
                "POST /api/todos - create a todo",
                "PUT /api/todos/:id - edit a todo",
                "DELETE /api/todos/:id - delete a todo",
            ],
        }

    app.include_router(router)
    return app


if __name__ == "__main__":
    settings = get_settings()
    app = create_app(settings)
    logger.info("QA Todo API listening on port %s", settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
