"""Email and SMS templates for appointment notifications.

Placeholders use ``{{name}}``; a ``{{#name}}...{{/name}}`` block is kept only
when ``name`` has a non-blank value.
"""

import html
import re
from datetime import datetime

from clinicbook.core.timeutils import as_utc, get_zone

_CONDITIONAL_BLOCK = re.compile(r'{{#(\w+)}}(.*?){{/\1}}', re.DOTALL)
_PLACEHOLDER = re.compile(r'{{(\w+)}}')

_FOOTER = '\n\nThank you,\nThe Clinic Team'

_ROW = (
    '<tr><td style="padding: 10px; border: 1px solid #ddd;"><strong>{label}</strong></td>'
    '<td style="padding: 10px; border: 1px solid #ddd;">{value}</td></tr>'
)


def _html(title: str, intro: str, rows: list[tuple[str, str]], outro: str) -> str:
    table = ''.join(_ROW.format(label=label, value=value) for label, value in rows)
    return (
        f'<h2>{title}</h2>'
        '<p>Hello <strong>{{patientName}}</strong>,</p>'
        f'<p>{intro}</p>'
        f'<table style="border-collapse: collapse; width: 100%; margin: 20px 0;">{table}</table>'
        f'{outro}'
        '<p>Thank you,<br>The Clinic Team</p>'
    )


EMAIL_TEMPLATES = {
    'bookingConfirmation': {
        'subject': 'Appointment Confirmation - {{serviceName}}',
        'body': (
            'Hello {{patientName}},\n\n'
            'Your appointment has been successfully booked!\n\n'
            'Service: {{serviceName}}\n'
            'Provider: {{providerName}}\n'
            'Date: {{appointmentDate}}\n'
            'Time: {{appointmentTime}}\n'
            'Duration: {{duration}} minutes\n\n'
            'Confirmation Number: {{appointmentId}}\n\n'
            'Important: If you need to reschedule or cancel, please contact us at least 24 hours in advance.'
            + _FOOTER
        ),
        'html': _html(
            'Appointment Confirmation',
            'Your appointment has been successfully booked!',
            [
                ('Service', '{{serviceName}}'),
                ('Provider', '{{providerName}}'),
                ('Date', '{{appointmentDate}}'),
                ('Time', '{{appointmentTime}}'),
                ('Confirmation #', '{{appointmentId}}'),
            ],
            '<p style="color: #666; font-size: 14px;">If you need to reschedule or cancel, '
            'please contact us at least 24 hours in advance.</p>',
        ),
    },
    'bookingPending': {
        'subject': 'Appointment Pending Approval - {{serviceName}}',
        'body': (
            'Hello {{patientName}},\n\n'
            'Thank you for booking an appointment with us! Your appointment is pending approval.\n\n'
            'Service: {{serviceName}}\n'
            'Provider: {{providerName}}\n'
            'Date: {{appointmentDate}}\n'
            'Time: {{appointmentTime}}\n\n'
            'We will confirm your appointment within 24 hours. '
            'You will receive an email confirmation once approved.'
            + _FOOTER
        ),
        'html': _html(
            'Appointment Pending Approval',
            'Thank you for booking an appointment! Your appointment is pending approval.',
            [
                ('Service', '{{serviceName}}'),
                ('Provider', '{{providerName}}'),
                ('Requested Date', '{{appointmentDate}}'),
                ('Requested Time', '{{appointmentTime}}'),
            ],
            '<p style="color: #666; font-size: 14px;">We will confirm your appointment within 24 hours.</p>',
        ),
    },
    'statusChanged': {
        'subject': 'Appointment Status Updated - {{serviceName}}',
        'body': (
            'Hello {{patientName}},\n\n'
            'Your appointment status has been updated.\n\n'
            'Service: {{serviceName}}\n'
            'Status: {{newStatus}}\n'
            'Date: {{appointmentDate}}\n'
            'Time: {{appointmentTime}}\n\n'
            'If you have any questions, please contact us.'
            + _FOOTER
        ),
        'html': _html(
            'Appointment Status Updated',
            'Your appointment status has been updated to <strong style="color: #0097C2;">{{newStatus}}</strong>.',
            [
                ('Service', '{{serviceName}}'),
                ('Date', '{{appointmentDate}}'),
                ('Time', '{{appointmentTime}}'),
            ],
            '<p>If you have any questions, please contact us.</p>',
        ),
    },
    'appointmentReminder': {
        'subject': 'Reminder: Your appointment is coming up - {{serviceName}}',
        'body': (
            'Hello {{patientName}},\n\n'
            'This is a reminder about your upcoming appointment.\n\n'
            'Service: {{serviceName}}\n'
            'Provider: {{providerName}}\n'
            'Date: {{appointmentDate}}\n'
            'Time: {{appointmentTime}}\n\n'
            'Please arrive 10 minutes early. If you need to cancel or reschedule, '
            'please contact us as soon as possible.'
            + _FOOTER
        ),
        'html': _html(
            'Appointment Reminder',
            'This is a reminder about your upcoming appointment.',
            [
                ('Service', '{{serviceName}}'),
                ('Provider', '{{providerName}}'),
                ('Date', '{{appointmentDate}}'),
                ('Time', '{{appointmentTime}}'),
            ],
            '<p style="color: #666; font-size: 14px;">Please arrive 10 minutes early. '
            'If you need to reschedule, please contact us as soon as possible.</p>',
        ),
    },
    'appointmentRescheduled': {
        'subject': 'Appointment Rescheduled - {{serviceName}}',
        'body': (
            'Hello {{patientName}},\n\n'
            'Your appointment has been rescheduled successfully.\n\n'
            'Service: {{serviceName}}\n'
            'Provider: {{providerName}}\n'
            'New Date: {{appointmentDate}}\n'
            'New Time: {{appointmentTime}}\n'
            '{{#rescheduleReason}}\nReason for reschedule: {{rescheduleReason}}\n{{/rescheduleReason}}\n'
            'If you have any questions, please contact us.'
            + _FOOTER
        ),
        'html': _html(
            'Appointment Rescheduled',
            'Your appointment has been <strong style="color: #0097C2;">rescheduled</strong> successfully.',
            [
                ('Service', '{{serviceName}}'),
                ('Provider', '{{providerName}}'),
                ('New Date', '{{appointmentDate}}'),
                ('New Time', '{{appointmentTime}}'),
            ],
            '{{#rescheduleReason}}<p style="color: #666; font-size: 14px;"><strong>Reason for reschedule:'
            '</strong> {{rescheduleReason}}</p>{{/rescheduleReason}}'
            '<p>If you have any questions, please contact us.</p>',
        ),
    },
}

SMS_TEMPLATES = {
    'bookingConfirmation': (
        'Hello {{patientName}}, your appointment for {{serviceName}} is confirmed on {{appointmentDate}} '
        'at {{appointmentTime}} with {{providerName}}. Confirmation #: {{appointmentId}}. Reply HELP for support.'
    ),
    'bookingPending': (
        'Hello {{patientName}}, thank you for booking! Your appointment is pending approval. '
        "We'll confirm within 24 hours. Service: {{serviceName}} on {{appointmentDate}}."
    ),
    'appointmentReminder': (
        'Reminder: {{serviceName}} appointment on {{appointmentDate}} at {{appointmentTime}} with '
        '{{providerName}}. Please arrive 10 minutes early. Reply HELP for support.'
    ),
    'statusChanged': (
        'Your {{serviceName}} appointment on {{appointmentDate}} at {{appointmentTime}} status: '
        '{{newStatus}}. Contact us with questions.'
    ),
    'appointmentRescheduled': (
        'Your {{serviceName}} appointment has been rescheduled to {{appointmentDate}} at '
        '{{appointmentTime}} with {{providerName}}. Thank you!'
    ),
}


def interpolate_template(template: str, variables: dict[str, str]) -> str:
    def keep_block(match: re.Match) -> str:
        value = variables.get(match.group(1)) or ''
        return match.group(2) if value.strip() else ''

    result = _CONDITIONAL_BLOCK.sub(keep_block, template)
    return _PLACEHOLDER.sub(lambda match: str(variables.get(match.group(1)) or ''), result)


def render_email(template_key: str, variables: dict[str, str]) -> dict[str, str]:
    template = EMAIL_TEMPLATES[template_key]
    escaped = {name: html.escape(str(value)) for name, value in variables.items() if value is not None}
    return {
        'subject': interpolate_template(template['subject'], variables),
        'body': interpolate_template(template['body'], variables),
        'html': interpolate_template(template['html'], escaped),
    }


def render_sms(template_key: str, variables: dict[str, str]) -> str:
    return interpolate_template(SMS_TEMPLATES[template_key], variables)


def appointment_variables(
    appointment,
    *,
    service_name: str,
    provider_name: str,
    timezone_name: str,
    **extra: str,
) -> dict[str, str]:
    local_start: datetime = as_utc(appointment.start_time).astimezone(get_zone(timezone_name))
    duration = int((appointment.end_time - appointment.start_time).total_seconds() // 60)
    variables = {
        'patientName': appointment.patient_name,
        'serviceName': service_name,
        'providerName': provider_name,
        'appointmentDate': local_start.strftime('%m/%d/%Y'),
        'appointmentTime': local_start.strftime('%I:%M %p'),
        'appointmentId': appointment.id,
        'duration': str(duration),
    }
    variables.update(extra)
    return variables
