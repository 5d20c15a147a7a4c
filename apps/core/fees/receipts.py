from io import BytesIO

from PIL import Image, ImageDraw
from django.conf import settings
from django.db.models import Sum

from apps.core.utils.money import ZERO, quantize, to_decimal

from .models import FeeReceipt


def image_to_pdf_bytes(images):
    if not images:
        return b''
    rgb_images = [img.convert('RGB') for img in images]
    output = BytesIO()
    rgb_images[0].save(output, format='PDF', save_all=True, append_images=rgb_images[1:])
    return output.getvalue()


def balances_after_posting(receipt: FeeReceipt):
    """Return ``(paid, due)`` on the ledger as they stood right after ``receipt``."""
    if receipt.paid_after is not None and receipt.due_after is not None:
        return receipt.paid_after, receipt.due_after

    ledger = receipt.ledger
    paid = quantize(
        ledger.receipts.filter(pk__lte=receipt.pk).aggregate(total=Sum('amount_paid')).get('total') or ZERO
    )
    final = ledger.final_amount
    if final is None:
        final = to_decimal(ledger.total_amount) - to_decimal(ledger.concession_amount)
    due = quantize(final - paid)
    return paid, due if due > 0 else ZERO


def build_fee_receipt_image(receipt: FeeReceipt):
    width = 1240
    height = 1754
    page = Image.new('RGB', (width, height), color='white')
    draw = ImageDraw.Draw(page)

    student = receipt.student
    ledger = receipt.ledger
    collector = receipt.collected_by.get_username() if receipt.collected_by_id else '-'

    draw.rectangle((30, 30, width - 30, height - 30), outline='black', width=3)
    draw.text((60, 60), f"{settings.SCHOOL_NAME} - Fee Receipt", fill='black')
    draw.text((60, 110), f"Receipt No: {receipt.receipt_number}", fill='black')
    draw.text((60, 150), f"Generated On: {receipt.created_at.strftime('%Y-%m-%d %H:%M')}", fill='black')
    draw.text((60, 190), f"Academic Year: {receipt.academic_year.name}", fill='black')
    draw.text((60, 230), f"Student: {student.full_name} ({student.admission_number})", fill='black')
    draw.text((60, 270), f"Class: {ledger.class_level.name}", fill='black')
    draw.text((60, 310), f"Payment Date: {receipt.payment_date}", fill='black')
    draw.text((60, 350), f"Mode: {receipt.get_payment_mode_display()}", fill='black')
    draw.text((60, 390), f"Reference: {receipt.reference_number or '-'}", fill='black')
    draw.text((60, 430), f"Collected By: {collector}", fill='black')

    y = 510
    draw.line((60, y, width - 60, y), fill='black')
    y += 30
    draw.text((60, y), f"Amount Paid: {receipt.amount_paid}", fill='black')
    y += 36
    if receipt.remarks:
        draw.text((60, y), f"Remarks: {receipt.remarks}", fill='black')
        y += 36

    y += 20
    draw.line((60, y, width - 60, y), fill='black')
    y += 30

    paid_after, due_after = balances_after_posting(receipt)
    draw.text((60, y), f"Total Paid: {paid_after}", fill='black')
    y += 36
    draw.text((60, y), f"Balance Due: {due_after}", fill='black')
    y += 36
    status = 'Paid' if due_after == 0 else 'Partially paid'
    draw.text((60, y), f"Status: {status}", fill='black')

    return page


def generate_fee_receipt_pdf(receipt: FeeReceipt) -> bytes:
    image = build_fee_receipt_image(receipt)
    return image_to_pdf_bytes([image])
