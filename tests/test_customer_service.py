import pytest

from app.core.errors import InvalidRequest
from app.models.customer import Customer
from app.services.customer_service import find_by_email, find_or_create_by_email


def test_creates_then_reuses(db):
    first = find_or_create_by_email(db, "Ada@Example.com", "Ada", "Lovelace", "+44 1")
    db.commit()
    again = find_or_create_by_email(db, " ada@example.com ", "Someone", "Else")
    db.commit()
    assert again.id == first.id
    assert again.first_name == "Ada"
    assert db.query(Customer).count() == 1


def test_email_is_normalised(db):
    c = find_or_create_by_email(db, "  MIXED@Case.Test ")
    db.commit()
    assert c.email == "mixed@case.test"
    assert find_by_email(db, "mixed@CASE.test").id == c.id


@pytest.mark.parametrize("email", ["", "   ", "not-an-email", None])
def test_invalid_email_rejected(db, email):
    with pytest.raises(InvalidRequest):
        find_or_create_by_email(db, email)
