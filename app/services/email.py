import logging
import threading
import time
from typing import Any, Dict, Optional

from flask import current_app, render_template
from flask_mail import Message

from app.extensions import db, mail
from app.models import Landlord, NotificationLog
from app.observability import log_event

SUBJECTS = {
    "subscription_status": "Your RentLedger subscription status changed",
    "credits_purchased": "Your e-sign credits are ready",
}

def send_email(to_email: str, subject: str, template: str, context: Optional[Dict[str, Any]] = None,
               landlord_id: Optional[int] = None) -> bool:
    """
    template: basename under templates/email/ without extension.
    Renders both HTML and plaintext; records the attempt in NotificationLog.
    """
    context = context or {}
    msg = Message(recipients=[to_email], subject=subject)
    msg.body = render_template(f"email/{template}.txt", **context)
    msg.html = render_template(f"email/{template}.html", **context)

    log = NotificationLog(
        landlord_id=landlord_id,
        to_email=to_email.lower(),
        template=template,
        subject=subject,
        status="queued",
        meta={},
    )
    db.session.add(log)
    db.session.commit()

    start = time.perf_counter()
    try:
        mail.send(msg)
    except Exception as ex:
        latency_ms = int((time.perf_counter() - start) * 1000)
        log.status = "failed"
        log.meta = {"error": str(ex)}
        db.session.commit()
        log_event("mail_send", level=logging.WARNING, template=template, to=to_email.lower(),
                  outcome="smtp_error", latency_ms=latency_ms, smtp_error=str(ex))
        return False

    latency_ms = int((time.perf_counter() - start) * 1000)
    log.status = "sent"
    db.session.commit()
    log_event("mail_send", template=template, to=to_email.lower(), outcome="sent", latency_ms=latency_ms)
    return True

def _deliver(landlord_id: int, template: str, context: Dict[str, Any]) -> None:
    landlord = db.session.get(Landlord, landlord_id)
    if landlord is None or not landlord.email:
        log_event("notify_skipped", level=logging.WARNING, landlord_id=landlord_id, template=template)
        return
    ctx = {"landlord_name": landlord.name or landlord.email, **context}
    send_email(landlord.email, SUBJECTS.get(template, "RentLedger notification"), template, ctx, landlord_id=landlord_id)

def _deliver_guarded(landlord_id: int, template: str, context: Dict[str, Any]) -> None:
    try:
        _deliver(landlord_id, template, context)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("notify_landlord_failed landlord_id=%s template=%s", landlord_id, template)

def _deliver_in_context(app, landlord_id: int, template: str, context: Dict[str, Any]) -> None:
    with app.app_context():
        _deliver_guarded(landlord_id, template, context)

def notify_landlord(landlord_id: int, template: str, context: Dict[str, Any]) -> None:
    """
    Fire-and-forget. Runs after the primary transaction has committed; a
    failure here is logged and never propagates to the caller.
    """
    app = current_app._get_current_object()
    if app.config.get("NOTIFY_ASYNC", True):
        threading.Thread(
            target=_deliver_in_context,
            args=(app, landlord_id, template, context),
            name=f"notify-{template}-{landlord_id}",
            daemon=True,
        ).start()
        return
    _deliver_guarded(landlord_id, template, context)
