from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .catalog import new_document_id


class Supply(db.Model):
    """
    A supplier invoice imported from Excel.

    WHY: Audit trail of what each import did, and the duplicate-file guard
    (one successful import per file checksum unless forced).

    ROWS: JSON list of {original, normalized, hash, outcome, error}, one per
    parsed row, so the import can be reviewed after the fact.
    """
    __tablename__ = "supplies"
    __table_args__ = (
        db.Index("ix_supplies_status_date", "supply_status", "date_parsed"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.String(32), nullable=False, unique=True, default=new_document_id)

    filename = db.Column(db.String(255), nullable=False)
    checksum = db.Column(db.String(64), nullable=False, index=True)  # sha256 hex
    date_parsed = db.Column(db.DateTime(timezone=True), nullable=False)
    awb = db.Column(db.String(64), nullable=True)
    supplier = db.Column(db.String(255), nullable=True)

    rows = db.Column(db.JSON, nullable=False, default=list)
    supply_status = db.Column(db.String(16), nullable=False)  # success, failed, dry-run
    supply_errors = db.Column(db.JSON, nullable=False, default=list)
    supply_warnings = db.Column(db.JSON, nullable=False, default=list)

    cost_calculation_mode = db.Column(db.String(16), nullable=False, default="simple")
    full_cost_params = db.Column(db.JSON, nullable=True)

    user_id = db.Column(db.String(64), nullable=True)  # "<realm>:<id>" of the importer

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self, include_rows: bool = True) -> dict:
        data = {
            "id": self.id,
            "documentId": self.document_id,
            "filename": self.filename,
            "checksum": self.checksum,
            "dateParsed": to_utc_z(self.date_parsed),
            "awb": self.awb,
            "supplier": self.supplier,
            "supplyStatus": self.supply_status,
            "supplyErrors": list(self.supply_errors or []),
            "supplyWarnings": list(self.supply_warnings or []),
            "costCalculationMode": self.cost_calculation_mode,
            "fullCostParams": self.full_cost_params,
            "user": self.user_id,
            "createdAt": to_utc_z(self.created_at),
        }
        if include_rows:
            data["rows"] = list(self.rows or [])
        return data
