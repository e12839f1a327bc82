"""
Patient-facing messages triggered by appointment transitions.

Only the message content is built here. Delivery goes to an optional webhook
and is fire-and-forget: a failed delivery is logged and never fails the
transition that triggered it.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Callable, Optional

import httpx

from clinic_backend.core import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PatientMessage:
    appointment_id: int
    patient_name: str
    patient_email: Optional[str]
    patient_phone: Optional[str]
    subject: str
    body: str


def build_approval_message(appointment, patient, professional, procedure) -> PatientMessage:
    when = appointment.start_time.strftime('%d/%m/%Y %H:%M')
    professional_name = getattr(professional, 'name', None) or 'our team'
    procedure_name = getattr(procedure, 'name', None) or 'your appointment'
    body = (
        f'Hello {patient.name}, your booking for {procedure_name} with {professional_name} '
        f'on {when} has been confirmed. See you soon!'
    )
    return PatientMessage(
        appointment_id=appointment.id,
        patient_name=patient.name,
        patient_email=patient.email,
        patient_phone=patient.phone,
        subject='Appointment confirmed',
        body=body,
    )


def send_webhook_notification(
    message: PatientMessage,
    *,
    url: str,
    timeout_seconds: float = 10.0,
) -> None:
    with httpx.Client(timeout=timeout_seconds) as client:
        response = client.post(url, json=asdict(message))
        response.raise_for_status()


def dispatch_patient_message(
    message: PatientMessage,
    sender: Optional[Callable[..., None]] = None,
) -> bool:
    url = config.NOTIFICATION_WEBHOOK_URL
    if not url:
        logger.info('No notification webhook configured; message for appointment %s not sent', message.appointment_id)
        return False

    send = sender or send_webhook_notification
    try:
        send(message, url=url, timeout_seconds=config.NOTIFICATION_TIMEOUT_SECONDS)
    except httpx.HTTPError:
        logger.exception('Notification delivery failed for appointment %s', message.appointment_id)
        return False

    logger.info('Notification sent for appointment %s', message.appointment_id)
    return True
