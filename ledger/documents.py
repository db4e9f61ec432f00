from common.money import to_decimal, to_money
from ledger.formatting import amount_in_words, format_currency, format_indian_date
from ledger.invoicing import LineItem, apportion_per_item

EWAY_BILL_VERSION = "1.0.0621"
DEFAULT_HSN_CODE = "0000"


def gst_breakdown(amount, gst_rate, inter_state=False):
    """Tax on ``amount`` split into CGST/SGST halves, or charged whole as IGST across states."""
    total = to_money(to_decimal(amount) * to_decimal(gst_rate) / 100)
    if inter_state:
        return {"cgst": to_money(0), "sgst": to_money(0), "igst": total, "total": total}
    cgst = to_money(total / 2)
    return {"cgst": cgst, "sgst": total - cgst, "igst": to_money(0), "total": total}


def invoice_lines(invoice):
    return [
        LineItem(item_name=item.item_name, quantity=item.quantity, rate=item.rate_per_unit, unit=item.unit)
        for item in invoice.items.all()
    ]


def _party(source, fields):
    return {name: (getattr(source, name, None) or "") for name in fields}


def build_invoice_document(invoice, profile=None):
    """Everything a renderer needs to print an invoice, with amounts pre-formatted."""
    lines = invoice_lines(invoice)
    shares = apportion_per_item(lines, invoice.tax_percentage, invoice.transport_charges)
    balance_due = max(to_money(invoice.total_amount) - to_money(invoice.paid_amount), to_money(0))

    items = []
    for index, share in enumerate(shares, start=1):
        line = share.line
        items.append(
            {
                "sl_no": index,
                "item_name": line.item_name,
                "quantity": line.quantity,
                "unit": line.unit,
                "rate_per_unit": to_money(line.rate),
                "amount": line.amount,
                "tax_amount": share.tax_amount,
                "transport_share": share.transport_share,
                "total": share.total,
                "rate_display": format_currency(line.rate),
                "amount_display": format_currency(line.amount),
            }
        )

    return {
        "invoice_number": invoice.invoice_number,
        "invoice_date": format_indian_date(invoice.invoice_date),
        "status": invoice.status,
        "seller": _party(profile, ("organization_name", "full_name", "address", "phone", "gst_number")),
        "customer": _party(invoice.customer, ("name", "phone", "email", "address", "gst_number")),
        "items": items,
        "transport": _party(invoice, ("transport_company", "truck_number", "driver_contact", "delivery_notes")),
        "totals": {
            "subtotal": to_money(invoice.subtotal),
            "tax_percentage": to_decimal(invoice.tax_percentage),
            "tax_amount": to_money(invoice.tax_amount),
            "transport_charges": to_money(invoice.transport_charges),
            "total_amount": to_money(invoice.total_amount),
            "paid_amount": to_money(invoice.paid_amount),
            "balance_due": balance_due,
        },
        "display": {
            "subtotal": format_currency(invoice.subtotal),
            "tax_amount": format_currency(invoice.tax_amount),
            "transport_charges": format_currency(invoice.transport_charges),
            "total_amount": format_currency(invoice.total_amount),
            "paid_amount": format_currency(invoice.paid_amount),
            "balance_due": format_currency(balance_due),
        },
        "amount_in_words": amount_in_words(invoice.total_amount),
    }


def build_eway_bill(invoice, profile=None, *, inter_state=False):
    """E-way bill upload payload (one bill per invoice) in the portal's JSON field names."""
    seller_gstin = getattr(profile, "gst_number", None) or ""
    customer = invoice.customer
    rate = to_decimal(invoice.tax_percentage)
    tax = gst_breakdown(invoice.subtotal, rate, inter_state=inter_state)
    half_rate = float(rate / 2)

    item_list = []
    for index, share in enumerate(apportion_per_item(invoice_lines(invoice), rate), start=1):
        line = share.line
        if inter_state:
            cgst = sgst = to_money(0)
            igst = share.tax_amount
        else:
            cgst = to_money(share.tax_amount / 2)
            sgst = share.tax_amount - cgst
            igst = to_money(0)
        item_list.append(
            {
                "slNo": str(index),
                "prdDesc": line.item_name,
                "isService": "N",
                "hsnCd": DEFAULT_HSN_CODE,
                "qty": float(line.quantity),
                "unit": line.unit,
                "unitPrice": float(line.rate),
                "totAmt": float(line.amount),
                "discount": 0,
                "assessableVal": float(line.amount),
                "cgstRate": 0 if inter_state else half_rate,
                "cgstAmt": float(cgst),
                "sgstRate": 0 if inter_state else half_rate,
                "sgstAmt": float(sgst),
                "igstRate": float(rate) if inter_state else 0,
                "igstAmt": float(igst),
                "cessRate": 0,
                "cessAmt": 0,
                "otherValue": 0,
                "totItemVal": float(line.amount + share.tax_amount),
            }
        )

    return {
        "version": EWAY_BILL_VERSION,
        "billLists": [
            {
                "userGstin": seller_gstin,
                "supplyType": "O",
                "subSupplyType": "1",
                "subSupplyDesc": "Others",
                "docType": "INV",
                "docNo": invoice.invoice_number,
                "docDate": format_indian_date(invoice.invoice_date),
                "fromGstin": seller_gstin,
                "fromTrdName": getattr(profile, "organization_name", None) or "",
                "fromAddr1": getattr(profile, "address", None) or "",
                "toGstin": customer.gst_number or "URP",
                "toTrdName": customer.name,
                "toAddr1": customer.address or "",
                "transactionType": "1",
                "totalValue": float(to_money(invoice.subtotal)),
                "cgstValue": float(tax["cgst"]),
                "sgstValue": float(tax["sgst"]),
                "igstValue": float(tax["igst"]),
                "cessValue": 0,
                "otherValue": float(to_money(invoice.transport_charges)),
                "totInvValue": float(to_money(invoice.total_amount)),
                "transMode": "1",
                "transDistance": "0",
                "transporterName": invoice.transport_company or "",
                "vehicleNo": invoice.truck_number or "",
                "vehicleType": "R",
                "itemList": item_list,
            }
        ],
    }
