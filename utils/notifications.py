"""
Transactional emails sent after money moves.

Every function renders one template and returns the send result. Callers on
the settlement path treat these as best-effort: a failed email is logged and
never undoes a purchase.
"""
from decimal import Decimal
from typing import Optional

from core.config import APP_NAME, APP_URL, CURRENCY_SYMBOL, CURRENCY_CODE, logger
from utils.emailing import render_email, send_email_smtp

PAYMENT_METHOD_LABELS = {
    "FIAT": "Credit/Debit Card",
    "CRYPTO": "Cryptocurrency",
    "MANUAL": "Manual Payment",
}


def format_percentage(percentage_bp: int) -> str:
    """2500 -> '25.00%'"""
    return f"{Decimal(int(percentage_bp)) / Decimal(100):.2f}%"


def format_amount(amount, currency: Optional[str] = None) -> str:
    code = (currency or CURRENCY_CODE).upper()
    value = Decimal(str(amount or 0))
    if code == CURRENCY_CODE:
        return f"{CURRENCY_SYMBOL}{value:,.2f}"
    return f"{value:,.2f} {code}"


def _first_name(name: Optional[str], email: str) -> str:
    name = (name or "").strip()
    if name:
        return name.split(" ")[0]
    return (email or "").split("@")[0] or "there"


def _send(to_addr: str, subject: str, template: str, tag: str, **context) -> bool:
    html = render_email(template, subject=subject, **context)
    ok = send_email_smtp(to_addr, subject, html)
    if not ok:
        logger.warning(f"[notify.{tag}] email to {to_addr} was not sent")
    return ok


def send_purchase_confirmation(
    to_addr: str,
    name: Optional[str],
    ownership_id: int,
    collection_name: str,
    unit_name: str,
    percentage_bp: int,
    amount,
    currency: str,
    payment_method: str,
) -> bool:
    return _send(
        to_addr,
        f"Your {collection_name} ownership is confirmed",
        "purchase_confirmation.html",
        "purchase",
        name=_first_name(name, to_addr),
        ownership_id=ownership_id,
        collection_name=collection_name,
        unit_name=unit_name,
        percentage=format_percentage(percentage_bp),
        amount=format_amount(amount, currency),
        payment_method=PAYMENT_METHOD_LABELS.get(payment_method, payment_method),
        dashboard_url=f"{APP_URL}/dashboard/portfolio",
    )


def send_moa_ready(to_addr: str, name: Optional[str], ownership_id: int, collection_name: str) -> bool:
    return _send(
        to_addr,
        "Your Management Agreement is ready to sign",
        "moa_ready.html",
        "moa",
        name=_first_name(name, to_addr),
        collection_name=collection_name,
        sign_url=f"{APP_URL}/dashboard/ownerships/{ownership_id}/moa",
    )


def send_guest_welcome(to_addr: str, name: Optional[str]) -> bool:
    return _send(
        to_addr,
        f"Welcome to {APP_NAME}: your investor account",
        "welcome_guest.html",
        "welcome",
        name=_first_name(name, to_addr),
        email=to_addr,
        signin_url=f"{APP_URL}/auth/signin",
    )


def send_investor_welcome(to_addr: str, name: Optional[str]) -> bool:
    return _send(
        to_addr,
        "Welcome aboard, investor",
        "welcome_investor.html",
        "welcome",
        name=_first_name(name, to_addr),
        dashboard_url=f"{APP_URL}/dashboard",
    )


def send_commission_earned(
    to_addr: str,
    name: Optional[str],
    commission_amount,
    commission_rate,
    collection_name: str,
    percentage_bp: int,
) -> bool:
    return _send(
        to_addr,
        "You earned a commission",
        "commission_earned.html",
        "commission",
        name=_first_name(name, to_addr),
        commission=format_amount(commission_amount),
        rate=f"{Decimal(str(commission_rate)):.2f}%",
        collection_name=collection_name,
        percentage=format_percentage(percentage_bp),
        dashboard_url=f"{APP_URL}/dashboard/affiliate",
    )


def send_manual_payment_under_review(
    to_addr: str,
    name: Optional[str],
    reference_code: str,
    amount,
    currency: str,
    method_name: str,
) -> bool:
    return _send(
        to_addr,
        f"We received your payment proof ({reference_code})",
        "manual_payment_review.html",
        "manual",
        name=_first_name(name, to_addr),
        reference_code=reference_code,
        amount=format_amount(amount, currency),
        method_name=method_name,
    )


def send_manual_payment_rejected(to_addr: str, name: Optional[str], reference_code: str, reason: str) -> bool:
    return _send(
        to_addr,
        f"Action needed on payment {reference_code}",
        "manual_payment_rejected.html",
        "manual",
        name=_first_name(name, to_addr),
        reference_code=reference_code,
        reason=reason,
        resubmit_url=f"{APP_URL}/dashboard/payments",
    )


def send_agreement_signed(to_addr: str, name: Optional[str], agreement_name: str, unit_name: str, document_url: str) -> bool:
    return _send(
        to_addr,
        f"Your {agreement_name} is signed",
        "agreement_signed.html",
        "agreement",
        name=_first_name(name, to_addr),
        agreement_name=agreement_name,
        unit_name=unit_name,
        document_url=document_url,
    )


def send_admin_agreement_signed(
    to_addr: str,
    investor_name: Optional[str],
    investor_email: str,
    agreement_name: str,
    unit_name: str,
    percentage_bp: int,
    document_url: str,
    ownership_id: int,
) -> bool:
    return _send(
        to_addr,
        f"{agreement_name} signed for ownership #{ownership_id}",
        "admin_agreement_signed.html",
        "agreement",
        name="team",
        investor_name=investor_name or "Unknown",
        investor_email=investor_email,
        agreement_name=agreement_name,
        unit_name=unit_name,
        percentage=format_percentage(percentage_bp),
        document_url=document_url,
        ownership_id=ownership_id,
    )
