"""Document sink: payslips and Form 16 rendered as standalone HTML files.

Rendering is best-effort. Callers log and continue when a sink raises;
a missing payslip never blocks a payroll transition.
"""

from __future__ import annotations

import html
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

from payroll_backend.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentArtifact:
    path: str
    generated_at: datetime


class DocumentSink(Protocol):
    def render_payslip(self, payroll) -> DocumentArtifact: ...

    def render_form16(self, tax_record) -> DocumentArtifact: ...


# ── HTML helpers ────────────────────────────────────────────────────

_LABELS = {
    "basic_salary": "Basic Salary",
    "hra": "House Rent Allowance",
    "special_allowance": "Special Allowance",
    "transport_allowance": "Transport Allowance",
    "medical_allowance": "Medical Allowance",
    "other_allowances": "Other Allowances",
    "overtime": "Overtime",
    "bonus": "Bonus",
    "incentives": "Incentives",
    "arrears": "Arrears",
    "reimbursements": "Reimbursements",
    "loan_deduction": "Loan Recovery",
    "advance_deduction": "Advance Recovery",
    "loss_of_pay": "Loss of Pay",
    "disciplinary_deduction": "Disciplinary / Fines",
    "other_deductions": "Other Deductions",
}


def _label(key: str) -> str:
    return _LABELS.get(key, key.replace("_", " ").title())


def _amount(value) -> str:
    if isinstance(value, dict):
        value = value.get("amount", 0)
    return f"₹{int(value or 0):,}"


def _rows(items: list[tuple[str, object]]) -> str:
    return "\n".join(
        f"<tr><td>{html.escape(label)}</td><td class='amt'>{_amount(value)}</td></tr>"
        for label, value in items
    )


def _page(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html>\n<html><head><meta charset='utf-8'>"
        f"<title>{html.escape(title)}</title>"
        "<style>body{font-family:sans-serif}table{border-collapse:collapse;width:100%}"
        "td{border:1px solid #ccc;padding:4px}.amt{text-align:right}</style>"
        f"</head><body><h1>{html.escape(title)}</h1>\n{body}\n</body></html>\n"
    )


def render_payslip_html(payroll) -> str:
    employee = payroll.employee
    name = employee.full_name if employee is not None else str(payroll.employee_id)
    code = employee.employee_code if employee is not None else ""

    earnings = [
        (_label(k), v) for k, v in (payroll.earnings or {}).items()
        if k != "total" and _amount(v) != "₹0"
    ]
    stat = payroll.statutory_deductions or {}
    deductions = [
        ("Provident Fund", (stat.get("pf") or {}).get("total", 0)),
        ("ESI", (stat.get("esi") or {}).get("total", 0)),
        ("Professional Tax", (stat.get("professional_tax") or {}).get("amount", 0)),
        ("Income Tax (TDS)", (stat.get("income_tax") or {}).get("tax_deducted", 0)),
    ]
    deductions += [
        (_label(k), v) for k, v in (payroll.other_deductions or {}).items()
        if k != "total" and _amount(v) != "₹0"
    ]

    body = (
        f"<p>{html.escape(name)} ({html.escape(code)}) — {payroll.period_label}</p>"
        f"<p>Working days: {payroll.working_days}, paid days: {payroll.actual_working_days}</p>"
        f"<h2>Earnings</h2><table>{_rows(earnings)}</table>"
        f"<h2>Deductions</h2><table>{_rows(deductions)}</table>"
        "<h2>Summary</h2><table>"
        + _rows([
            ("Gross Pay", payroll.gross_pay),
            ("Total Deductions", payroll.total_deductions),
            ("Net Pay", payroll.net_pay),
        ])
        + "</table>"
    )
    return _page(f"Payslip {payroll.payroll_code}", body)


def render_form16_html(tax_record) -> str:
    employee = tax_record.employee
    name = employee.full_name if employee is not None else str(tax_record.employee_id)
    pan = (employee.pan_number or "") if employee is not None else ""
    fy = f"{tax_record.fy_start_year}-{(tax_record.fy_start_year + 1) % 100:02d}"

    postings = [
        (f"{p.year}-{p.month:02d}", p.tds_amount) for p in tax_record.monthly_postings
    ]
    body = (
        f"<p>{html.escape(name)} — PAN {html.escape(pan)} — FY {fy}</p>"
        f"<p>Regime: {html.escape(tax_record.tax_regime)}</p>"
        "<h2>Part A — TDS deposited</h2>"
        f"<table>{_rows(postings)}</table>"
        "<h2>Part B — Computation</h2><table>"
        + _rows([
            ("Gross Salary", tax_record.gross_annual_salary),
            ("Exemptions (HRA)", tax_record.hra_exemption),
            ("Chapter VI-A Deductions", tax_record.total_declared_deductions),
            ("Taxable Income", tax_record.taxable_income),
            ("Tax on Income", tax_record.applicable_tax),
            ("Health & Education Cess", tax_record.cess),
            ("Total Tax Liability", tax_record.total_tax_liability),
            ("TDS Deducted", tax_record.tds_deducted),
        ])
        + "</table>"
    )
    return _page(f"Form 16 {tax_record.tax_code}", body)


# ── File sink ───────────────────────────────────────────────────────

class FileDocumentSink:
    """Writes HTML documents under ``base_dir`` (default ``settings.payslip_dir``)."""

    def __init__(self, base_dir: str | None = None) -> None:
        self.base_dir = base_dir or settings.payslip_dir

    def _write(self, subdir: str, filename: str, content: str) -> DocumentArtifact:
        target_dir = os.path.join(self.base_dir, subdir)
        os.makedirs(target_dir, exist_ok=True)
        file_path = os.path.join(target_dir, filename)
        with open(file_path, "w", encoding="utf-8") as f:
            f.write(content)
        return DocumentArtifact(path=file_path, generated_at=datetime.now(timezone.utc))

    def render_payslip(self, payroll) -> DocumentArtifact:
        artifact = self._write(
            payroll.period_label, f"{payroll.payroll_code}.html", render_payslip_html(payroll),
        )
        logger.info("Payslip written for %s at %s", payroll.payroll_code, artifact.path)
        return artifact

    def render_form16(self, tax_record) -> DocumentArtifact:
        artifact = self._write(
            "form16", f"{tax_record.tax_code}.html", render_form16_html(tax_record),
        )
        logger.info("Form 16 written for %s at %s", tax_record.tax_code, artifact.path)
        return artifact


def get_document_sink() -> DocumentSink:
    """FastAPI dependency / default factory."""
    return FileDocumentSink()
