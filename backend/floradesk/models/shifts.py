from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .catalog import new_document_id


class Shift(db.Model):
    """
    One working day of the shop.

    WHY: The activity log every analytics figure is computed from. Each POS
    or catalog action the client performs is appended as an activity
    {id, type, timestamp, details}, newest first.

    INVARIANTS:
    - exactly one shift per shop-local calendar date (unique shift_date)
    - activity ids are unique within a shift (adding twice is a no-op)
    - a closed shift carries summary totals and an inventory snapshot

    NOTE: `activities` is a JSON column; always assign a new list so the
    change is flushed.
    """
    __tablename__ = "shifts"
    __table_args__ = (
        db.UniqueConstraint("shift_date", name="uq_shifts_shift_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.String(32), nullable=False, unique=True, default=new_document_id)

    shift_date = db.Column(db.String(10), nullable=False, index=True)  # YYYY-MM-DD
    started_at = db.Column(db.DateTime(timezone=True), nullable=False)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="active", index=True)  # active, closed

    activities = db.Column(db.JSON, nullable=False, default=list)
    summary = db.Column(db.JSON, nullable=True)

    total_sales = db.Column(db.Integer, nullable=False, default=0)
    total_sales_amount = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=False, default=0)
    total_write_offs = db.Column(db.Integer, nullable=False, default=0)
    total_write_offs_qty = db.Column(db.Integer, nullable=False, default=0)
    inventory_value = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=True)
    inventory_qty = db.Column(db.Integer, nullable=True)

    notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "documentId": self.document_id,
            "shiftDate": self.shift_date,
            "startedAt": to_utc_z(self.started_at),
            "closedAt": to_utc_z(self.closed_at),
            "status": self.status,
            "activities": list(self.activities or []),
            "summary": self.summary,
            "totalSales": self.total_sales or 0,
            "totalSalesAmount": self.total_sales_amount or 0,
            "totalWriteOffs": self.total_write_offs or 0,
            "totalWriteOffsQty": self.total_write_offs_qty or 0,
            "inventoryValue": self.inventory_value,
            "inventoryQty": self.inventory_qty,
            "notes": self.notes,
        }
