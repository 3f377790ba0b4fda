from __future__ import annotations

from ..extensions import db
from grid_manager.money import format_cents
from grid_manager.time_utils import to_utc_z


ACCOUNT_CASH = "CASH"
ACCOUNT_BANK = "BANK"
ACCOUNT_WALLET = "WALLET"
ACCOUNT_TYPES = (ACCOUNT_CASH, ACCOUNT_BANK, ACCOUNT_WALLET)


class Account(db.Model):
    """
    A cash box, bank account or wallet the business holds money in.

    current_balance_cents moves only through AccountMovement rows; the API
    never writes it directly.
    """
    __tablename__ = "accounts"
    __table_args__ = (
        db.UniqueConstraint("org_id", "name", name="uq_accounts_org_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    name = db.Column(db.String(120), nullable=False)
    type = db.Column(db.String(16), nullable=False, default=ACCOUNT_CASH)
    account_number = db.Column(db.String(64), nullable=True)
    currency = db.Column(db.String(8), nullable=False)

    current_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "type": self.type,
            "account_number": self.account_number,
            "currency": self.currency,
            "current_balance_cents": self.current_balance_cents,
            "current_balance": format_cents(self.current_balance_cents),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class AccountMovement(db.Model):
    """Signed money movement on an Account (positive is money in)."""
    __tablename__ = "account_movements"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=False)
    reference = db.Column(db.String(64), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    account = db.relationship("Account", backref=db.backref("movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "amount_cents": self.amount_cents,
            "amount": format_cents(self.amount_cents),
            "description": self.description,
            "reference": self.reference,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
