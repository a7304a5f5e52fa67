import logging
import tomllib
from datetime import date
from importlib import metadata
from pathlib import Path
from typing import Iterator, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse

from aggregation import TransactionFilters
from config import BACKEND_LOCAL, get_settings
from csv_utils import export_filename
from database import session_scope
from gateway import (
    AuthError,
    DuplicateCategoryError,
    FinanceGateway,
    GatewayError,
    ImmutableFieldError,
    SchemaMissingError,
    TransactionNotFound,
    UserExistsError,
)
from local_gateway import LocalGateway
from models import TransactionType
from periods import resolve_period
from schemas import BudgetIn, CategoryIn, Credentials, TransactionIn, UserRecord
from services import TrackerService
from session_tokens import SESSION_COOKIE, issue_session_token, read_session_token
from sql_gateway import SqlGateway

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Tracker")

PYPROJECT = Path(__file__).with_name("pyproject.toml")


def _load_app_version() -> str:
    try:
        return metadata.version("finance-tracker")
    except metadata.PackageNotFoundError:
        pass
    try:
        with PYPROJECT.open("rb") as fh:
            return str(tomllib.load(fh)["project"]["version"])
    except (OSError, KeyError, tomllib.TOMLDecodeError):
        return "unknown"


APP_VERSION = _load_app_version()


def _error(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


@app.exception_handler(SchemaMissingError)
def schema_missing_handler(request: Request, exc: SchemaMissingError):
    logger.error(f"schema_missing: path={request.url.path}")
    return JSONResponse(
        status_code=503,
        content={"detail": str(exc), "setup_required": True},
    )


@app.exception_handler(DuplicateCategoryError)
def duplicate_category_handler(request: Request, exc: DuplicateCategoryError):
    return _error(409, str(exc))


@app.exception_handler(UserExistsError)
def user_exists_handler(request: Request, exc: UserExistsError):
    return _error(409, str(exc))


@app.exception_handler(AuthError)
def auth_error_handler(request: Request, exc: AuthError):
    return _error(401, str(exc))


@app.exception_handler(TransactionNotFound)
def not_found_handler(request: Request, exc: TransactionNotFound):
    return _error(404, str(exc))


@app.exception_handler(ImmutableFieldError)
def immutable_field_handler(request: Request, exc: ImmutableFieldError):
    return _error(400, str(exc))


@app.exception_handler(GatewayError)
def gateway_error_handler(request: Request, exc: GatewayError):
    logger.error(f"gateway_error: path={request.url.path} error={exc}")
    return _error(500, str(exc))


def get_gateway(request: Request) -> Iterator[FinanceGateway]:
    user = read_session_token(request.cookies.get(SESSION_COOKIE))
    if settings.backend == BACKEND_LOCAL:
        yield LocalGateway(settings.local_store_path, current_user=user)
        return
    with session_scope() as session:
        yield SqlGateway(session, current_user=user)


def get_tracker(gateway: FinanceGateway = Depends(get_gateway)) -> TrackerService:
    user = gateway.get_current_user()
    if user is None:
        raise HTTPException(status_code=401, detail="Not signed in")
    tracker = TrackerService(gateway, user)
    tracker.reload()
    return tracker


def filters_from_request(request: Request) -> TransactionFilters:
    params = request.query_params
    try:
        type_raw = params.get("type")
        txn_type: Optional[TransactionType] = (
            TransactionType(type_raw) if type_raw and type_raw != "all" else None
        )
        period = resolve_period(
            params.get("period"), params.get("start"), params.get("end")
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    category = params.get("category")
    return TransactionFilters(
        type=txn_type,
        category=category if category and category != "all" else None,
        query=params.get("q"),
        period=period,
    )


def _start_session(response: Response, user: UserRecord) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        issue_session_token(user),
        max_age=settings.session_max_age_hours * 3600,
        httponly=True,
        samesite="lax",
    )


@app.get("/health")
def health():
    return {"status": "ok", "backend": settings.backend, "version": APP_VERSION}


@app.post("/auth/signup", status_code=201)
def sign_up(
    credentials: Credentials,
    response: Response,
    gateway: FinanceGateway = Depends(get_gateway),
):
    user = gateway.sign_up(credentials.email, credentials.password)
    _start_session(response, user)
    return user


@app.post("/auth/signin")
def sign_in(
    credentials: Credentials,
    response: Response,
    gateway: FinanceGateway = Depends(get_gateway),
):
    user = gateway.sign_in(credentials.email, credentials.password)
    _start_session(response, user)
    return user


@app.post("/auth/signout", status_code=204)
def sign_out(response: Response, gateway: FinanceGateway = Depends(get_gateway)):
    gateway.sign_out()
    response.delete_cookie(SESSION_COOKIE)


@app.get("/auth/me")
def current_user(gateway: FinanceGateway = Depends(get_gateway)):
    user = gateway.get_current_user()
    if user is None:
        raise HTTPException(status_code=401, detail="Not signed in")
    return user


@app.get("/transactions")
def list_transactions(request: Request, tracker: TrackerService = Depends(get_tracker)):
    filters = filters_from_request(request)
    return tracker.visible_transactions(filters)


@app.post("/transactions", status_code=201)
def create_transaction(
    data: TransactionIn, tracker: TrackerService = Depends(get_tracker)
):
    return tracker.save_transaction(data)


@app.get("/transactions/export.csv")
def export_transactions_endpoint(
    request: Request, tracker: TrackerService = Depends(get_tracker)
):
    filters = filters_from_request(request)
    csv_text = tracker.export_csv(filters)
    filename = export_filename(date.today())
    logger.info(f"csv_export: user_id={tracker.user.id} bytes={len(csv_text)}")
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/transactions/{transaction_id}")
def get_transaction(transaction_id: str, tracker: TrackerService = Depends(get_tracker)):
    return tracker.get_transaction(transaction_id)


@app.put("/transactions/{transaction_id}")
def update_transaction(
    transaction_id: str,
    data: TransactionIn,
    tracker: TrackerService = Depends(get_tracker),
):
    return tracker.save_transaction(data, transaction_id)


@app.delete("/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: str, tracker: TrackerService = Depends(get_tracker)
):
    tracker.delete_transaction(transaction_id)


@app.get("/categories")
def list_categories(tracker: TrackerService = Depends(get_tracker)):
    return tracker.categories()


@app.post("/categories", status_code=201)
def create_category(data: CategoryIn, tracker: TrackerService = Depends(get_tracker)):
    return tracker.add_category(data)


@app.delete("/categories/{category_id}", status_code=204)
def delete_category(category_id: str, tracker: TrackerService = Depends(get_tracker)):
    tracker.delete_category(category_id)


@app.get("/budgets")
def list_budgets(tracker: TrackerService = Depends(get_tracker)):
    return {"budgets": tracker.budgets, "categories": tracker.budget_candidates()}


@app.put("/budgets/{category_name}")
def set_budget(
    category_name: str,
    data: BudgetIn,
    tracker: TrackerService = Depends(get_tracker),
):
    return tracker.set_budget(category_name, data.amount)


@app.get("/dashboard")
def dashboard(tracker: TrackerService = Depends(get_tracker)):
    return tracker.dashboard(date.today())


@app.post("/insights")
def insights(tracker: TrackerService = Depends(get_tracker)):
    return {"insight": tracker.insight()}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
