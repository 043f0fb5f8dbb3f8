"""Utilities for seeding development data."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.backend.src.models import PaymentMethod, User

DEFAULT_PAYMENT_METHOD_CODE = "cash"
DEFAULT_PAYMENT_METHOD_NAME = "Cash"
DEFAULT_ADMIN_EMAIL = "admin@charity.example"
DEFAULT_ADMIN_NAME = "Demo Admin"


@dataclass
class SeedResult:
    """Information about the seeded admin and payment method."""

    admin: User
    payment_method: PaymentMethod
    admin_created: bool
    payment_method_created: bool


def seed_development_data(
    session: Session,
    *,
    admin_email: str = DEFAULT_ADMIN_EMAIL,
    admin_name: str = DEFAULT_ADMIN_NAME,
    payment_method_code: str = DEFAULT_PAYMENT_METHOD_CODE,
    payment_method_name: str = DEFAULT_PAYMENT_METHOD_NAME,
    auth0_sub: str | None = None,
) -> SeedResult:
    """Ensure an admin account and the default payment method exist.

    Existing records are updated in place so the seed can be rerun.
    """

    method = session.execute(
        select(PaymentMethod).where(PaymentMethod.code == payment_method_code)
    ).scalar_one_or_none()
    method_created = False
    if method is None:
        method = PaymentMethod(code=payment_method_code, name=payment_method_name, is_active=True)
        session.add(method)
        session.flush()
        method_created = True
    elif not method.is_active:
        method.is_active = True

    admin = session.execute(select(User).where(User.email == admin_email)).scalar_one_or_none()
    admin_created = False
    if admin is None:
        admin = User(email=admin_email, name=admin_name, role="admin", auth0_sub=auth0_sub)
        session.add(admin)
        session.flush()
        admin_created = True
    else:
        admin.role = "admin"
        admin.is_active = True
        if auth0_sub and admin.auth0_sub != auth0_sub:
            admin.auth0_sub = auth0_sub

    return SeedResult(
        admin=admin,
        payment_method=method,
        admin_created=admin_created,
        payment_method_created=method_created,
    )


__all__ = ["seed_development_data", "SeedResult"]
