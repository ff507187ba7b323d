from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import require_roles, to_http
from app.core.errors import BookingError
from app.db.session import get_db
from app.models.business_user import BusinessUser
from app.schemas.payments import PlatformFeeUpdate
from app.services.audit_service import log_audit
from app.services.settings_service import get_system_fee_percentage, set_system_fee_percentage

router = APIRouter(tags=["admin"])

# Tenant "admin" users manage their own business only; platform settings need platform_admin
platform_admin = require_roles("platform_admin")


@router.get("/admin/platform-fee")
def get_platform_fee(db: Session = Depends(get_db), me: BusinessUser = Depends(platform_admin)):
    return {"percentage": get_system_fee_percentage(db)}


@router.put("/admin/platform-fee")
def update_platform_fee(body: PlatformFeeUpdate, db: Session = Depends(get_db), me: BusinessUser = Depends(platform_admin)):
    previous = get_system_fee_percentage(db)
    try:
        pct = set_system_fee_percentage(db, body.percentage)
    except BookingError as e:
        raise to_http(e)
    log_audit(db, actor=me.id, action="setting.platform_fee_updated", entity_type="setting",
              entity_id="PLATFORM_FEE_PERCENTAGE", details={"from": str(previous), "to": str(pct)})
    db.commit()
    return {"percentage": pct}
