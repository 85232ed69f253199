from sqlalchemy import select
from app.extensions import db, mail
from app.models import NotificationLog
from app.services.email import notify_landlord, send_email

def test_send_email_records_sent(app, make_landlord):
    lid = make_landlord(email="owner@example.test")
    with app.app_context():
        with mail.record_messages() as outbox:
            ok = send_email("Owner@Example.test", "Credits", "credits_purchased",
                            {"landlord_name": "Owner", "units": 2, "amount_cents": 600}, landlord_id=lid)
        assert ok is True
        assert len(outbox) == 1
        assert "2 e-signature credits have been added" in outbox[0].body
        log = db.session.execute(select(NotificationLog)).scalar_one()
        assert log.status == "sent"
        assert log.to_email == "owner@example.test"

def test_smtp_failure_is_recorded_not_raised(app, make_landlord, monkeypatch):
    lid = make_landlord()

    def _boom(msg):
        raise ConnectionRefusedError("smtp down")
    monkeypatch.setattr(mail, "send", _boom)

    with app.app_context():
        notify_landlord(lid, "subscription_status", {"previous_status": "active", "status": "past_due"})
        log = db.session.execute(select(NotificationLog)).scalar_one()
        assert log.status == "failed"
        assert "smtp down" in log.meta["error"]

def test_notify_unknown_landlord_is_skipped(app):
    with app.app_context():
        notify_landlord(424242, "credits_purchased", {"units": 1})
        assert db.session.execute(select(NotificationLog)).first() is None

def test_mail_outcomes_go_through_shared_event_log(app, make_landlord, monkeypatch):
    from app.services import email as email_service
    events = []
    monkeypatch.setattr(email_service, "log_event", lambda event, **fields: events.append((event, fields)))
    lid = make_landlord()
    with app.app_context():
        notify_landlord(lid, "credits_purchased", {"units": 1, "amount_cents": 300})
        notify_landlord(424242, "credits_purchased", {"units": 1})
    assert [name for name, _ in events] == ["mail_send", "notify_skipped"]
    assert events[0][1]["outcome"] == "sent"
