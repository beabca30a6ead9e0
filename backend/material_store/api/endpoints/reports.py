import io
from datetime import datetime
from typing import Any, Optional
import pandas as pd
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
from sqlalchemy.orm import Session
from material_store.api import deps
from material_store.crud import crud_report
from material_store.crud.crud_notification import format_rupiah
from material_store.db.session import get_db
from material_store.models.base import User, now_local
from material_store.schemas.schemas import (
    DashboardSummaryOut, FinancialReportOut, StockReportOut, TrendReportOut
)

router = APIRouter()

finance_readers = deps.require_roles("ADMIN", "VIEWER")


@router.get("/dashboard", response_model=DashboardSummaryOut)
def dashboard(db: Session = Depends(get_db), current_user: User = Depends(deps.get_current_active_user)) -> Any:
    return crud_report.get_dashboard_summary(db)


@router.get("/stock", response_model=StockReportOut)
def stock_report(
    category_id: Optional[int] = None,
    low_stock_only: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user)
) -> Any:
    return crud_report.get_stock_report(db, category_id, low_stock_only)


@router.get("/financial", response_model=FinancialReportOut)
def financial_report(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    type: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(finance_readers)
) -> Any:
    return crud_report.get_financial_report(db, start_date, end_date, type)


@router.get("/trend", response_model=TrendReportOut)
def trend_report(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(finance_readers)
) -> Any:
    return crud_report.get_trend_report(db, start_date, end_date)

# ============================================================
# EXPORTS
# ============================================================

@router.get("/stock/export")
def export_stock_report(
    category_id: Optional[int] = None,
    low_stock_only: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user)
):
    report = crud_report.get_stock_report(db, category_id, low_stock_only)
    data = [{
        "Product": i["name"],
        "SKU": i["sku"],
        "Category": i["category"],
        "Brand": i["brand"],
        "Unit": i["unit"] or "-",
        "Stock": i["stock"],
        "Min Stock": i["min_stock"],
        "Buy Price": i["buy_price"],
        "Sell Price": i["sell_price"],
        "Stock Value": i["stock_value"],
        "Low Stock": "YES" if i["is_low_stock"] else "",
    } for i in report["items"]]

    df = pd.DataFrame(data, columns=[
        "Product", "SKU", "Category", "Brand", "Unit", "Stock", "Min Stock",
        "Buy Price", "Sell Price", "Stock Value", "Low Stock"
    ])
    output = io.BytesIO()
    with pd.ExcelWriter(output, engine='openpyxl') as writer:
        df.to_excel(writer, index=False, sheet_name='Stock')

    output.seek(0)
    headers = {
        'Content-Disposition': f'attachment; filename="stock_report_{now_local().strftime("%Y%m%d")}.xlsx"'
    }
    return StreamingResponse(output, headers=headers, media_type='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet')


@router.get("/financial/pdf")
def export_financial_pdf(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(finance_readers)
):
    report = crud_report.get_financial_report(db, start_date, end_date)

    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4)
    elements = []

    styles = getSampleStyleSheet()
    normal_style = styles['Normal']

    period = " - ".join(d.strftime('%Y-%m-%d') if d else "..." for d in (start_date, end_date))
    elements.append(Paragraph("Toko Material Pesantren - Financial Report", styles['Title']))
    elements.append(Paragraph(f"Period: {period}", normal_style))
    elements.append(Paragraph(f"Generated: {now_local().strftime('%Y-%m-%d %H:%M')} by {current_user.username}", normal_style))
    elements.append(Spacer(1, 20))

    data = [["Item", "Amount"]]
    data.append([f"Purchases received ({report['purchases']['count']} PO)",
                 format_rupiah(report['purchases']['total_amount'])])
    for row in report["expenditure_by_type"]:
        data.append([f"Expenditure - {row['label']}", format_rupiah(row["total"])])
    data.append(["Total expenditure", format_rupiah(report["total_expenditure"])])
    data.append([f"Outstanding BON ({report['outstanding_bon']['count']})",
                 format_rupiah(report["outstanding_bon"]["total_outstanding"])])

    table = Table(data, colWidths=[300, 150])
    table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), colors.grey),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
        ('ALIGN', (1, 0), (1, -1), 'RIGHT'),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('BOTTOMPADDING', (0, 0), (-1, 0), 12),
        ('BACKGROUND', (0, 1), (-1, -1), colors.beige),
        ('GRID', (0, 0), (-1, -1), 1, colors.black)
    ]))
    elements.append(table)

    if report["expenditure_by_unit"]:
        elements.append(Spacer(1, 20))
        elements.append(Paragraph("Expenditure per unit lembaga", styles['Heading3']))
        unit_rows = [["Unit lembaga", "Total"]] + [
            [u["unit_lembaga_name"], format_rupiah(u["total"])] for u in report["expenditure_by_unit"]
        ]
        unit_table = Table(unit_rows, colWidths=[300, 150])
        unit_table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.grey),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
            ('ALIGN', (1, 0), (1, -1), 'RIGHT'),
            ('GRID', (0, 0), (-1, -1), 1, colors.black)
        ]))
        elements.append(unit_table)

    doc.build(elements)
    buffer.seek(0)

    headers = {
        'Content-Disposition': 'attachment; filename="financial_report.pdf"'
    }
    return StreamingResponse(buffer, headers=headers, media_type='application/pdf')
