"""
Transaction closing summary PDF using ReportLab.
Renders the deal terms, checklist and timeline of a transaction and returns the bytes.
"""
import io
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import LETTER
from reportlab.lib.units import mm
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.enums import TA_CENTER

TASK_STATUS_LABELS = {
    "pending": "Pending",
    "complete": "Complete",
    "skipped": "Skipped",
    "failed": "Failed",
}


def _money(value) -> str:
    return f"${value:,.2f}" if value is not None else "-"


def _text(value) -> str:
    return escape(str(value)) if value else "-"


def generate_transaction_summary_pdf(tx, tasks, events) -> bytes:
    """Generate a one-document closing summary for a transaction. Returns raw PDF bytes."""
    buf = io.BytesIO()
    doc = SimpleDocTemplate(buf, pagesize=LETTER, topMargin=15 * mm, bottomMargin=15 * mm,
                            leftMargin=15 * mm, rightMargin=15 * mm)

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle("Title", parent=styles["Heading1"], fontSize=18,
                                 textColor=colors.HexColor("#1e40af"), alignment=TA_CENTER)
    subtitle_style = ParagraphStyle("Sub", parent=styles["Normal"], fontSize=9,
                                    textColor=colors.gray, alignment=TA_CENTER)
    heading_style = ParagraphStyle("Heading", parent=styles["Heading3"], fontSize=11,
                                   textColor=colors.HexColor("#1e3a5f"), spaceAfter=4)
    normal = styles["Normal"]
    small = ParagraphStyle("Small", parent=normal, fontSize=8)

    listing = tx.listing
    elements = []

    # ── Header ──
    elements.append(Paragraph("NOTE SALE SUMMARY", title_style))
    elements.append(Paragraph(f"Transaction #{tx.id} | {_text(listing.title)}", subtitle_style))
    elements.append(Spacer(1, 6 * mm))

    # ── Deal Terms ──
    info_data = [
        [Paragraph(f"<b>Status:</b> {tx.status.title()}", normal),
         Paragraph(f"<b>Phase:</b> {tx.current_phase.title()}", normal)],
        [Paragraph(f"<b>Final Amount:</b> {_money(tx.final_amount)}", normal),
         Paragraph(f"<b>Asking Price:</b> {_money(listing.asking_price)}", normal)],
        [Paragraph(f"<b>Cut-off Date:</b> {_text(tx.cut_off_date)}", normal),
         Paragraph(f"<b>Closing Date:</b> {_text(tx.closing_date)}", normal)],
    ]
    info_table = Table(info_data, colWidths=[90 * mm, 90 * mm])
    info_table.setStyle(TableStyle([
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 2),
    ]))
    elements.append(info_table)
    elements.append(Spacer(1, 5 * mm))

    # ── Parties ──
    parties = [
        [Paragraph("<b>Seller</b>", heading_style),
         Paragraph("<b>Buyer</b>", heading_style)],
        [Paragraph(f"{_text(tx.seller.full_name)}<br/>{_text(tx.seller.company)}", small),
         Paragraph(f"{_text(tx.buyer.full_name)}<br/>{_text(tx.buyer.company)}<br/>"
                   f"Vesting: {_text(tx.buyer_vesting_info)}", small)],
    ]
    parties_table = Table(parties, colWidths=[90 * mm, 90 * mm])
    parties_table.setStyle(TableStyle([
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.lightgrey),
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#eff6ff")),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
        ("TOPPADDING", (0, 0), (-1, -1), 4),
        ("LEFTPADDING", (0, 0), (-1, -1), 6),
    ]))
    elements.append(parties_table)
    elements.append(Spacer(1, 5 * mm))

    # ── Collateral ──
    elements.append(Paragraph("<b>Note &amp; Collateral</b>", heading_style))
    elements.append(Paragraph(
        f"{_text(listing.property_address)}, {_text(listing.property_city)}, "
        f"{listing.property_state} {listing.property_zip_code}<br/>"
        f"Unpaid balance {_money(listing.current_loan_amount)} at {listing.interest_rate}% | "
        f"{listing.remaining_loan_term} months remaining<br/>"
        f"Servicer: {_text(tx.servicer_info)} | Collateral tracking: {_text(tx.collateral_tracking_number)}",
        small,
    ))
    elements.append(Spacer(1, 5 * mm))

    # ── Checklist ──
    rows = [["#", "Phase", "Task", "Owner", "Required", "Status"]]
    for idx, task in enumerate(tasks, 1):
        rows.append([
            str(idx), task.phase.title(), Paragraph(_text(task.description), small),
            task.assigned_to.title(), "Yes" if task.is_required else "No",
            TASK_STATUS_LABELS.get(task.status, task.status),
        ])
    tasks_table = Table(rows, colWidths=[8 * mm, 24 * mm, 82 * mm, 22 * mm, 18 * mm, 22 * mm], repeatRows=1)
    tasks_table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#1e40af")),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 7.5),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.lightgrey),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 3),
        ("TOPPADDING", (0, 0), (-1, -1), 3),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#f8fafc")]),
    ]))
    elements.append(Paragraph("<b>Closing Checklist</b>", heading_style))
    elements.append(tasks_table)
    elements.append(Spacer(1, 5 * mm))

    # ── Timeline ──
    elements.append(Paragraph("<b>Timeline</b>", heading_style))
    for event in events:
        stamp = event.event_timestamp.strftime("%Y-%m-%d %H:%M") if event.event_timestamp else ""
        elements.append(Paragraph(
            f"<font face='Courier' size='7'>{stamp}</font> [{event.event_type}] {_text(event.event_description)}",
            small,
        ))

    if tx.cancellation_reason:
        elements.append(Spacer(1, 3 * mm))
        elements.append(Paragraph("<b>Cancellation reason:</b> " + _text(tx.cancellation_reason), small))

    elements.append(Spacer(1, 10 * mm))
    elements.append(Paragraph("This summary is generated from the transaction record and is not a closing statement.",
                              subtitle_style))
    elements.append(Paragraph("Generated by NoteTrade", subtitle_style))

    doc.build(elements)
    return buf.getvalue()
