from fastapi import APIRouter, Depends, Request

from app.stockflow.core.error_catalog import AppError
from app.stockflow.db.session import get_db
from app.stockflow.repos.users import UserRepository
from app.stockflow.schemas.auth import LoginRequest, TokenResponse
from app.stockflow.services.audit import AuditEventPayload, AuditService
from app.stockflow.services.auth import AuthService

router = APIRouter()


@router.post("/login", response_model=TokenResponse, summary="Login (JSON)")
def login(request: Request, payload: LoginRequest, db=Depends(get_db)):
    identifier = payload.email or payload.username_or_email
    trace_id = getattr(request.state, "trace_id", "")
    try:
        user, token = AuthService(db).login(identifier, payload.password)
    except AppError as exc:
        candidate = UserRepository(db).get_by_username_or_email(identifier)
        if candidate is not None:
            AuditService(db).record_event(
                AuditEventPayload(
                    user_id=str(candidate.id),
                    trace_id=trace_id or None,
                    actor=identifier,
                    action="auth.login.failed",
                    entity_type="user",
                    entity_id=str(candidate.id),
                    before=None,
                    after=None,
                    metadata={"error_code": exc.error.code},
                    result="failure",
                )
            )
        raise

    request.state.user_id = str(user.id)
    AuditService(db).record_event(
        AuditEventPayload(
            user_id=str(user.id),
            trace_id=trace_id or None,
            actor=user.username,
            action="auth.login",
            entity_type="user",
            entity_id=str(user.id),
            before=None,
            after=None,
            metadata=None,
            result="success",
            actor_role=user.role,
        )
    )
    return TokenResponse(access_token=token, trace_id=trace_id)
