"""FastAPI application entrypoint and HTTP controllers.

Controllers are intentionally thin: they resolve the caller's
`Principal`, hand the raw body to a service and wrap the result in the
response envelope. Every response body carries the HTTP status code:

    {"status": 200, ...payload}
    {"status": 403, "error": "forbidden", "msg": "..."}

204 responses have no body.

Endpoints implemented:
- GET  /v1/projects, /v1/user/{id_or_username}/projects    (public, cached)
- GET  /v1/project/{id_or_alias}, /v1/project/{id}/tasks,
       /v1/project/{id}/answers, /v1/task/{id}, /v1/task/{id}/answers,
       /v1/answer/{id}                                        (public)
- POST|PATCH|PUT|DELETE /v1/project, /v1/task, /v1/answer     (bearer JWT)
- GET  /v1/me/projects, /v1/me/tasks, /v1/me/answers          (bearer JWT)
- POST /v1/auth/signup, /v1/auth/login
- PATCH /v1/user/password, /v1/user/attrs                     (bearer JWT)
- PUT /v1/cdn/upload, DELETE /v1/cdn/remove, GET /v1/cdn/list (bearer JWT)
- POST /v1/webhook/postmark/subscription                      (basic auth)
"""

import json
import logging
import time
import uuid
from typing import Any, Callable

from fastapi import Body, Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import services
from .auth import Principal, get_principal, require_webhook_auth
from .config import Settings, get_settings
from .database import create_db_and_tables, get_session
from .errors import ApiError, UpstreamError, ValidationError
from .policies import check_ownership
from .schemas import LoginIn, PasswordChangeIn, PostmarkSubscriptionIn, RegisterIn, RemoveFileIn, UserAttrsIn
from .utils.object_store import FILE_TYPES, ObjectStore, get_object_store, owner_from_key
from .utils.response_cache import ResponseCache

settings = get_settings()
app = FastAPI(title="Content API")
logger = logging.getLogger("content_api.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)
_response_cache = ResponseCache()

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


def _envelope(status_code: int, **payload) -> dict:
    return {"status": status_code, **payload}


def _error_response(status_code: int, kind: str, msg: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": status_code, "error": kind, "msg": msg})


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    if request.url.path.startswith("/v1"):
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
    return response


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError):
    if isinstance(exc, UpstreamError):
        logger.error("upstream_error path=%s scope=%s msg=%s", request.url.path, exc.scope, exc.msg)
    return _error_response(exc.status_code, exc.kind, exc.msg)


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(request: Request, exc: RequestValidationError):
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return _error_response(ValidationError.status_code, ValidationError.kind, "; ".join(parts) or "invalid request")


@app.exception_handler(SQLAlchemyError)
async def handle_database_error(request: Request, exc: SQLAlchemyError):
    logger.exception("database_error path=%s", request.url.path)
    return _error_response(UpstreamError.status_code, UpstreamError.kind, "database error")


@app.exception_handler(StarletteHTTPException)
async def handle_http_error(request: Request, exc: StarletteHTTPException):
    kind = "not_found" if exc.status_code == 404 else "http"
    return _error_response(exc.status_code, kind, str(exc.detail))


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    logger.exception("unhandled_error path=%s", request.url.path)
    return _error_response(500, UpstreamError.kind, "internal error")


def _cached(request: Request, response: Response, cfg: Settings, build: Callable[[], dict]) -> Any:
    """Serve `build()` through the response cache unless `?no-cache=true`."""
    ttl = cfg.CACHE_EXPIRATION_MINUTES * 60
    if ttl <= 0 or request.query_params.get("no-cache") == "true":
        response.headers["Cache-Control"] = "no-cache"
        return build()
    key = f"{request.url.path}?{request.url.query}"
    payload = _response_cache.get(key)
    if payload is None:
        payload = jsonable_encoder(build())
        _response_cache.set(key, payload, ttl)
        response.headers["X-Cache"] = "MISS"
    else:
        response.headers["X-Cache"] = "HIT"
    response.headers["Cache-Control"] = f"public, max-age={ttl}"
    return payload


def _invalidate_cache() -> None:
    _response_cache.clear()


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return _envelope(200, health="ok")


# --- public reads ---------------------------------------------------------

@app.get("/v1/projects")
def list_projects(
    request: Request,
    response: Response,
    db: Session = Depends(get_session),
    cfg: Settings = Depends(get_settings),
):
    """List active projects, newest first."""
    def build():
        projects = services.ProjectService(db).list_public()
        return _envelope(200, count=len(projects), projects=projects)
    return _cached(request, response, cfg, build)


@app.get("/v1/user/{user_ref}/projects")
def list_user_projects(
    user_ref: str,
    request: Request,
    response: Response,
    db: Session = Depends(get_session),
    cfg: Settings = Depends(get_settings),
):
    """List the active projects of one user, given by UUID or username."""
    def build():
        projects = services.ProjectService(db).list_public_by_user_ref(user_ref)
        return _envelope(200, count=len(projects), projects=projects)
    return _cached(request, response, cfg, build)


@app.get("/v1/project/{project_ref}")
def get_project(project_ref: str, db: Session = Depends(get_session)):
    """Return one project by UUID or alias, whatever its status."""
    svc = services.ProjectService(db)
    return _envelope(200, project=svc.detail(svc.get_by_ref(project_ref)))


@app.get("/v1/project/{project_id}/tasks")
def list_project_tasks(project_id: uuid.UUID, db: Session = Depends(get_session)):
    tasks = services.TaskService(db).list_public_by_project(project_id)
    return _envelope(200, count=len(tasks), tasks=tasks)


@app.get("/v1/project/{project_id}/answers")
def list_project_answers(project_id: uuid.UUID, db: Session = Depends(get_session)):
    answers = services.AnswerService(db).list_public_by_project(project_id)
    return _envelope(200, count=len(answers), answers=answers)


@app.get("/v1/task/{task_id}")
def get_task(task_id: uuid.UUID, db: Session = Depends(get_session)):
    svc = services.TaskService(db)
    return _envelope(200, task=svc.detail(svc.get(task_id)))


@app.get("/v1/task/{task_id}/answers")
def list_task_answers(task_id: uuid.UUID, db: Session = Depends(get_session)):
    answers = services.AnswerService(db).list_public_by_task(task_id)
    return _envelope(200, count=len(answers), answers=answers)


@app.get("/v1/answer/{answer_id}")
def get_answer(answer_id: uuid.UUID, db: Session = Depends(get_session)):
    svc = services.AnswerService(db)
    return _envelope(200, answer=svc.detail(svc.get(answer_id)))


# --- private content ------------------------------------------------------

@app.post("/v1/project", status_code=201)
def create_project(
    payload: Any = Body(default=None),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_session),
):
    """Create a draft project owned by the caller (`projects:create`)."""
    project = services.ProjectService(db).create(principal, payload)
    _invalidate_cache()
    return _envelope(201, project=services.entity_view(project))


@app.api_route("/v1/project", methods=["PATCH", "PUT"], status_code=204)
def update_project(
    payload: Any = Body(default=None),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_session),
):
    """Update status/attrs of a project the caller owns (`projects:update:own`)."""
    services.ProjectService(db).update(principal, payload)
    _invalidate_cache()
    return Response(status_code=204)


@app.delete("/v1/project", status_code=204)
def delete_project(
    payload: Any = Body(default=None),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_session),
):
    """Delete a project the caller owns (`projects:delete:own`); its tasks and answers stay."""
    services.ProjectService(db).delete(principal, payload)
    _invalidate_cache()
    return Response(status_code=204)


@app.post("/v1/task", status_code=201)
def create_task(
    payload: Any = Body(default=None),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_session),
):
    task = services.TaskService(db).create(principal, payload)
    _invalidate_cache()
    return _envelope(201, task=services.entity_view(task))


@app.api_route("/v1/task", methods=["PATCH", "PUT"], status_code=204)
def update_task(
    payload: Any = Body(default=None),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_session),
):
    services.TaskService(db).update(principal, payload)
    _invalidate_cache()
    return Response(status_code=204)


@app.delete("/v1/task", status_code=204)
def delete_task(
    payload: Any = Body(default=None),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_session),
):
    services.TaskService(db).delete(principal, payload)
    _invalidate_cache()
    return Response(status_code=204)


@app.post("/v1/answer", status_code=201)
def create_answer(
    payload: Any = Body(default=None),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_session),
):
    answer = services.AnswerService(db).create(principal, payload)
    return _envelope(201, answer=services.entity_view(answer))


@app.api_route("/v1/answer", methods=["PATCH", "PUT"], status_code=204)
def update_answer(
    payload: Any = Body(default=None),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_session),
):
    services.AnswerService(db).update(principal, payload)
    return Response(status_code=204)


@app.delete("/v1/answer", status_code=204)
def delete_answer(
    payload: Any = Body(default=None),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_session),
):
    services.AnswerService(db).delete(principal, payload)
    return Response(status_code=204)


@app.get("/v1/me/projects")
def list_my_projects(principal: Principal = Depends(get_principal), db: Session = Depends(get_session)):
    """Every project the caller owns, drafts and blocked ones included."""
    projects = services.ProjectService(db).list_for_owner(principal)
    return _envelope(200, count=len(projects), projects=projects)


@app.get("/v1/me/tasks")
def list_my_tasks(principal: Principal = Depends(get_principal), db: Session = Depends(get_session)):
    tasks = services.TaskService(db).list_for_owner(principal)
    return _envelope(200, count=len(tasks), tasks=tasks)


@app.get("/v1/me/answers")
def list_my_answers(principal: Principal = Depends(get_principal), db: Session = Depends(get_session)):
    answers = services.AnswerService(db).list_for_owner(principal)
    return _envelope(200, count=len(answers), answers=answers)


# --- users ----------------------------------------------------------------

@app.post("/v1/auth/signup", status_code=201)
def signup(payload: RegisterIn, db: Session = Depends(get_session)):
    """Register a new user with the default `user` role."""
    user = services.AuthService(db).register(payload)
    return _envelope(201, user={"id": user.id, "email": user.email, "username": user.username})


@app.post("/v1/auth/login")
def login(payload: LoginIn, db: Session = Depends(get_session), cfg: Settings = Depends(get_settings)):
    """Authenticate a user and return a signed access token.

    The token carries `user_id` and the credential strings of the
    user's role.
    """
    token, expires = services.AuthService(db).authenticate(payload, cfg)
    return _envelope(200, access_token=token, token_type="bearer", expires=int(expires.timestamp()))


@app.patch("/v1/user/password", status_code=204)
def change_password(
    payload: PasswordChangeIn,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_session),
):
    services.UserService(db).change_password(principal, payload)
    return Response(status_code=204)


@app.patch("/v1/user/attrs")
def update_user_attrs(
    payload: UserAttrsIn,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_session),
):
    user = services.UserService(db).update_attrs(principal, payload)
    _invalidate_cache()
    return _envelope(200, user={"id": user.id, "user_attrs": user.user_attrs})


# --- CDN ------------------------------------------------------------------

@app.put("/v1/cdn/upload", status_code=201)
def upload_file(
    file: UploadFile = File(...),
    file_type: str = Form(..., alias="type"),
    principal: Principal = Depends(get_principal),
    store: ObjectStore = Depends(get_object_store),
    cfg: Settings = Depends(get_settings),
):
    """Upload an image (jpg/png/svg) or a PDF document into the caller's folder."""
    if file_type not in FILE_TYPES:
        raise ValidationError(f"wrong or unsupported file type ({file_type})", scope="file")
    payload = file.file.read(cfg.MAX_UPLOAD_BYTES + 1)
    if len(payload) > cfg.MAX_UPLOAD_BYTES:
        raise ValidationError(f"file is too large for upload (max {cfg.MAX_UPLOAD_BYTES} bytes)", scope="file")
    stored = store.upload(principal.user_id, payload, file_type)
    return _envelope(
        201,
        info={"key": stored.key, "etag": stored.etag, "size": stored.size, "version_id": stored.version_id},
        url=store.url_for(stored.key),
    )


@app.delete("/v1/cdn/remove", status_code=204)
def remove_file(
    payload: RemoveFileIn,
    principal: Principal = Depends(get_principal),
    store: ObjectStore = Depends(get_object_store),
):
    """Remove a file; only the user whose folder holds it may do so."""
    owner_id = owner_from_key(payload.key, store.uploads_folder)
    check_ownership(principal.user_id, owner_id, scope="file")
    store.remove(payload.key, payload.version_id)
    return Response(status_code=204)


@app.get("/v1/cdn/list")
def list_files(principal: Principal = Depends(get_principal), store: ObjectStore = Depends(get_object_store)):
    objects = store.list_for_user(principal.user_id)
    return _envelope(200, count=len(objects), objects=objects)


# --- webhooks -------------------------------------------------------------

@app.post("/v1/webhook/postmark/subscription", status_code=204, dependencies=[Depends(require_webhook_auth)])
def postmark_subscription(payload: PostmarkSubscriptionIn, db: Session = Depends(get_session)):
    """Postmark subscription-change webhook: flips both email subscription flags."""
    services.SubscriptionService(db).apply(payload)
    return Response(status_code=204)
