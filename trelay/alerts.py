from __future__ import annotations

import smtplib
from dataclasses import dataclass
from email.message import EmailMessage

from . import db
from .db import utc_now
from .settings import Settings, settings


@dataclass(frozen=True)
class TransitionAlert:
    """An instance's API went down or came back."""

    server_name: str
    online: bool
    detail: str
    at: str

    @property
    def subject(self) -> str:
        state = "back online" if self.online else "unreachable"
        return f"[traefik-relay] {self.server_name} {state}"

    def body(self) -> str:
        lines = [
            f"Instance: {self.server_name}",
            f"State:    {'online' if self.online else 'offline'}",
            f"Since:    {self.at}",
        ]
        if self.detail:
            lines.append(f"Detail:   {self.detail}")
        if not self.online:
            lines += ["", "Unless preserveOnFailure is set, its routers leave the relay until the API answers again."]
        return "\n".join(lines) + "\n"


def recipients(cfg: Settings) -> list[str]:
    return [r.strip() for r in (cfg.email_to or "").split(",") if r.strip()]


def email_configured(cfg: Settings) -> bool:
    return bool(cfg.enable_email and cfg.smtp_host and cfg.email_from and recipients(cfg))


def build_message(alert: TransitionAlert, cfg: Settings) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = cfg.email_from
    msg["To"] = ", ".join(recipients(cfg))
    msg["Subject"] = alert.subject
    msg.set_content(alert.body())
    return msg


def send_alert(alert: TransitionAlert) -> bool:
    """Mail the alert when RELAY_ENABLE_EMAIL and the SMTP settings are set.

    Delivery problems are recorded in the event log and never reach the caller.
    """
    cfg = settings
    if not email_configured(cfg):
        return False

    msg = build_message(alert, cfg)
    try:
        with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=10) as smtp:
            if cfg.smtp_starttls:
                smtp.starttls()
            if cfg.smtp_user:
                smtp.login(cfg.smtp_user, cfg.smtp_password or "")
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        db.log_event("WARN", f"Alert email not sent: {type(e).__name__}: {e}", alert.server_name)
        return False

    db.log_event("INFO", f"Alert email sent to {len(recipients(cfg))} recipients", alert.server_name)
    return True


def server_transition(server_name: str, online: bool, detail: str) -> bool:
    return send_alert(TransitionAlert(server_name=server_name, online=online, detail=detail, at=utc_now()))
