"""Email service for appointment confirmations."""
import html
import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from medibook.core import config
from medibook.models.reservation import NOTIFICATION_FAILED, NOTIFICATION_SENT, NOTIFICATION_SKIPPED

logger = logging.getLogger(__name__)

REMINDERS = (
    'Arrive 10 minutes before your scheduled time',
    'Bring valid ID proof and insurance card',
    'Bring relevant medical records or test results',
    'Bring your prescription for follow-up visits',
)


@dataclass(frozen=True)
class ReservationSummary:
    reservation_id: str
    patient_name: str
    doctor_name: str
    specialty: str
    date: str
    time_label: str
    appointment_type: str
    consultation_fee: Optional[float] = None
    calendar_link: Optional[str] = None


@dataclass(frozen=True)
class NotificationResult:
    status: str
    detail: Optional[str] = None


def build_confirmation_subject(summary: ReservationSummary) -> str:
    return f"Appointment Confirmed: Dr. {summary.doctor_name} on {summary.date}"


def _fee_label(summary: ReservationSummary) -> str:
    if summary.consultation_fee is None:
        return '-'
    return f"₹{summary.consultation_fee:g}"


def _detail_rows(summary: ReservationSummary) -> list[tuple[str, str]]:
    return [
        ('Appointment ID', summary.reservation_id),
        ('Doctor', f"Dr. {summary.doctor_name}"),
        ('Specialty', summary.specialty or '-'),
        ('Date', summary.date),
        ('Time', summary.time_label),
        ('Type', summary.appointment_type),
        ('Consultation Fee', _fee_label(summary)),
    ]


def build_confirmation_text(summary: ReservationSummary) -> str:
    lines = [
        'Appointment Confirmed',
        '',
        f"Dear {summary.patient_name},",
        '',
        'Your appointment has been successfully confirmed!',
        '',
        'APPOINTMENT DETAILS:',
    ]
    lines += [f"{label}: {value}" for label, value in _detail_rows(summary)]
    lines += ['', 'IMPORTANT REMINDERS:']
    lines += [f"- {reminder}" for reminder in REMINDERS]
    if summary.calendar_link:
        lines += ['', f"Add to Calendar: {summary.calendar_link}"]
    return '\n'.join(lines) + '\n'


def build_confirmation_html(summary: ReservationSummary) -> str:
    rows = ''.join(
        f"<tr><td><strong>{html.escape(label)}:</strong></td><td>{html.escape(value)}</td></tr>"
        for label, value in _detail_rows(summary)
    )
    reminders = ''.join(f"<li>{html.escape(reminder)}</li>" for reminder in REMINDERS)
    calendar_button = ''
    if summary.calendar_link:
        calendar_button = (
            '<p style="text-align: center;">'
            f'<a href="{html.escape(summary.calendar_link, quote=True)}">Add to Google Calendar</a></p>'
        )

    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        '<h1>Appointment Confirmed</h1>'
        f"<p>Dear <strong>{html.escape(summary.patient_name)}</strong>,</p>"
        '<p>Your appointment has been successfully confirmed!</p>'
        f'<h3>Appointment Details</h3><table style="width: 100%;">{rows}</table>'
        f'<p><strong>Important Reminders:</strong></p><ul>{reminders}</ul>'
        f'{calendar_button}'
        '</div>'
    )


class EmailService:
    """Service for sending emails via SMTP."""

    def __init__(self):
        self.host = config.SMTP_HOST
        self.port = config.SMTP_PORT
        self.username = config.SMTP_USER
        self.password = config.SMTP_PASS
        self.from_email = config.FROM_EMAIL or config.SMTP_USER
        self.timeout = config.SMTP_TIMEOUT_SECONDS

    @property
    def configured(self) -> bool:
        return bool(self.host and self.username and self.password)

    def _connect(self) -> smtplib.SMTP:
        if self.port == 465:
            return smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout, context=ssl.create_default_context())

        server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        try:
            server.starttls(context=ssl.create_default_context())
        except Exception:
            server.close()
            raise
        return server

    def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None
    ) -> NotificationResult:
        """Send one multipart email. SMTP and network failures are reported, not raised."""
        if not to_email:
            logger.info("No recipient email - skipping")
            return NotificationResult(NOTIFICATION_SKIPPED, 'No recipient email')

        if not self.configured:
            logger.warning("SMTP not configured - skipping email to %s", to_email)
            return NotificationResult(NOTIFICATION_SKIPPED, 'SMTP not configured')

        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = self.from_email
        msg['To'] = to_email
        if text_content:
            msg.attach(MIMEText(text_content, 'plain', 'utf-8'))
        msg.attach(MIMEText(html_content, 'html', 'utf-8'))

        try:
            with self._connect() as server:
                server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send email to %s: %s", to_email, e)
            return NotificationResult(NOTIFICATION_FAILED, str(e))

        logger.info("Email sent to %s", to_email)
        return NotificationResult(NOTIFICATION_SENT)

    def send_confirmation(self, recipient: Optional[str], summary: ReservationSummary) -> NotificationResult:
        return self.send_email(
            recipient or '',
            build_confirmation_subject(summary),
            build_confirmation_html(summary),
            build_confirmation_text(summary),
        )


_email_service: Optional[EmailService] = None


def get_email_service() -> EmailService:
    """Get email service singleton."""
    global _email_service
    if _email_service is None:
        _email_service = EmailService()
    return _email_service
