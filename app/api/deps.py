from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.core.security import decode_token
from app.core.errors import BookingError, InvalidRequest, InvalidTransition, NotFound, PaymentGatewayError, SlotUnavailable
from app.models.business_user import BusinessUser
from app.services.notification_service import NotificationDispatcher
from app.services.stripe_client import get_payment_gateway

bearer = HTTPBearer(auto_error=False)

def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: Session = Depends(get_db),
) -> BusinessUser:
    if not creds:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_token(creds.credentials)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token")
    user = db.get(BusinessUser, payload.get("sub"))
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    # Token minted for another tenant (user moved or token forged): fail closed
    if payload.get("tid") != user.tenant_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user

def require_roles(*roles: str):
    def _guard(user: BusinessUser = Depends(get_current_user)) -> BusinessUser:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return user
    return _guard

def get_gateway():
    return get_payment_gateway()

def get_notifier(db: Session = Depends(get_db)) -> NotificationDispatcher:
    return NotificationDispatcher(db)

_STATUS_BY_ERROR = (
    (NotFound, 404),
    (SlotUnavailable, 409),
    (InvalidTransition, 409),
    (InvalidRequest, 400),
    (PaymentGatewayError, 502),
)

def to_http(e: BookingError) -> HTTPException:
    for cls, code in _STATUS_BY_ERROR:
        if isinstance(e, cls):
            return HTTPException(status_code=code, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))
