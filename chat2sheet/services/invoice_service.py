# chat2sheet/services/invoice_service.py - One-page payment receipt PDF
import asyncio
import logging
import os
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

from PIL import Image, ImageDraw, ImageFont

from chat2sheet.core.config import settings
from chat2sheet.schemas.ledger import (
    FeeAccountRecord, InstallmentRecord, StudentRecord, format_amount,
)

logger = logging.getLogger(__name__)

# A4 at 150 dpi
PAGE_SIZE = (1240, 1754)
MARGIN = 100


def _load_fonts():
    try:
        return (
            ImageFont.truetype("DejaVuSans-Bold.ttf", 44),
            ImageFont.truetype("DejaVuSans.ttf", 26),
            ImageFont.truetype("DejaVuSans.ttf", 20),
        )
    except OSError:
        default = ImageFont.load_default()
        return default, default, default


class InvoiceService:
    """Renders receipts into INVOICE_DIR; callers remove the file once delivered"""

    def __init__(self, output_dir: Optional[str] = None):
        self.output_dir = Path(output_dir or settings.INVOICE_DIR)

    async def generate_receipt(
        self,
        student: StudentRecord,
        installment: InstallmentRecord,
        account: Optional[FeeAccountRecord] = None,
    ) -> str:
        return await asyncio.to_thread(self.render_receipt, student, installment, account)

    def render_receipt(
        self,
        student: StudentRecord,
        installment: InstallmentRecord,
        account: Optional[FeeAccountRecord] = None,
    ) -> str:
        """Draw the receipt and save it as a PDF, returning the file path"""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        file_path = self.output_dir / f"invoice_{installment.inst_id}_{int(time.time() * 1000)}.pdf"

        title_font, body_font, small_font = _load_fonts()
        img = Image.new("RGB", PAGE_SIZE, "white")
        draw = ImageDraw.Draw(img)
        width = PAGE_SIZE[0]

        for text, font, top in (("PAYMENT RECEIPT", title_font, 100), (settings.SCHOOL_NAME, body_font, 170)):
            left = (width - draw.textlength(text, font=font)) // 2
            draw.text((left, top), text, fill="black", font=font)
        draw.line([(MARGIN, 220), (width - MARGIN, 220)], fill="black", width=2)

        y = 260
        details = [
            f"Receipt No: {installment.inst_id}",
            f"Date: {installment.date}",
            f"Student ID: {student.stud_id}",
            f"Student Name: {student.name}",
            f"Class: {student.class_name}",
        ]
        for line in details:
            draw.text((MARGIN, y), line, fill="black", font=body_font)
            y += 44

        y += 30
        box_top = y
        payment_lines = [
            f"Payment Amount: Rs. {format_amount(installment.installment_amount)}",
            f"Payment Mode: {installment.mode or 'Cash'}",
        ]
        if installment.remarks:
            payment_lines.append(f"Remarks: {installment.remarks}")
        if account is not None:
            payment_lines.extend([
                f"Total Fees: Rs. {format_amount(account.total_fees)}",
                f"Total Paid: Rs. {format_amount(account.total_paid)}",
                f"Remaining Balance: Rs. {format_amount(account.balance)}",
            ])

        y += 30
        for line in payment_lines:
            draw.text((MARGIN + 30, y), line, fill="black", font=body_font)
            y += 44
        draw.rectangle([(MARGIN, box_top), (width - MARGIN, y + 20)], outline="black", width=2)

        y += 80
        footer = [
            "Thank you for your payment!",
            "For queries, contact school administration.",
            f"Generated on: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        ]
        for line in footer:
            draw.text((MARGIN, y), line, fill="black", font=small_font)
            y += 30

        img.save(file_path, "PDF", resolution=150.0)
        img.close()

        logger.info(f"✅ Receipt PDF generated: {file_path}")
        return str(file_path)

    def cleanup(self, file_path: Optional[str]):
        if not file_path:
            return
        try:
            if os.path.exists(file_path):
                os.remove(file_path)
                logger.info(f"🗑️ Cleaned up receipt file: {file_path}")
        except OSError as e:
            logger.error(f"❌ Error cleaning up receipt file: {e}")


# Global singleton
_invoice_service: Optional[InvoiceService] = None


def get_invoice_service() -> InvoiceService:
    """Get or create invoice service singleton"""
    global _invoice_service
    if _invoice_service is None:
        _invoice_service = InvoiceService()
    return _invoice_service
