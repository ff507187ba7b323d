from decimal import Decimal, InvalidOperation
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import InvalidRequest
from app.models.setting import Setting
from app.models.tenant import Tenant

PLATFORM_FEE_KEY = "PLATFORM_FEE_PERCENTAGE"


def get_system_fee_percentage(db: Session) -> Decimal:
    s = db.get(Setting, PLATFORM_FEE_KEY)
    if s and s.str_value:
        try:
            return Decimal(s.str_value)
        except InvalidOperation:
            pass
    return Decimal(settings.PLATFORM_FEE_PERCENTAGE)


def get_platform_fee_percentage(db: Session, tenant: Tenant | None = None) -> Decimal:
    """Tenant override, then the stored system value, then PLATFORM_FEE_PERCENTAGE."""
    if tenant is not None and tenant.platform_fee_percentage is not None:
        return Decimal(tenant.platform_fee_percentage)
    return get_system_fee_percentage(db)


def set_system_fee_percentage(db: Session, pct: Decimal) -> Decimal:
    pct = Decimal(str(pct))
    if pct < 0 or pct > 100:
        raise InvalidRequest("fee percentage must be between 0 and 100")
    s = db.get(Setting, PLATFORM_FEE_KEY)
    if not s:
        s = Setting(key=PLATFORM_FEE_KEY, int_value=None, str_value=str(pct))
        db.add(s)
    else:
        s.str_value = str(pct)
    db.commit()
    return pct
