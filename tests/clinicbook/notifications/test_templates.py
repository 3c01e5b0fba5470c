import os
from datetime import datetime
from types import SimpleNamespace

import pytest

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from clinicbook.notifications.templates import (  # noqa: E402
    EMAIL_TEMPLATES,
    SMS_TEMPLATES,
    appointment_variables,
    interpolate_template,
    render_email,
    render_sms,
)


def make_appointment():
    return SimpleNamespace(
        id='abc123',
        patient_name='Grace Hopper',
        start_time=datetime(2030, 1, 7, 14, 0),
        end_time=datetime(2030, 1, 7, 14, 45),
    )


def test_interpolate_template_replaces_placeholders() -> None:
    result = interpolate_template('Hi {{name}}, see you at {{time}}.', {'name': 'Grace', 'time': '9:00'})

    assert result == 'Hi Grace, see you at 9:00.'


def test_interpolate_template_blanks_unknown_placeholders() -> None:
    assert interpolate_template('Hi {{name}}!', {}) == 'Hi !'


@pytest.mark.parametrize(
    ('reason', 'expected'),
    [('Provider ill', 'Moved. Reason: Provider ill.'), ('', 'Moved.'), ('   ', 'Moved.')],
)
def test_interpolate_template_conditional_block(reason: str, expected: str) -> None:
    template = 'Moved.{{#reason}} Reason: {{reason}}.{{/reason}}'

    assert interpolate_template(template, {'reason': reason}) == expected


def test_every_template_has_both_channels() -> None:
    assert set(EMAIL_TEMPLATES) == set(SMS_TEMPLATES)
    for template in EMAIL_TEMPLATES.values():
        assert set(template) == {'subject', 'body', 'html'}


def test_appointment_variables_use_clinic_timezone() -> None:
    variables = appointment_variables(
        make_appointment(),
        service_name='Health Screening',
        provider_name='Dr. Ada Lovelace',
        timezone_name='America/New_York',
        newStatus='Confirmed',
    )

    assert variables['appointmentDate'] == '01/07/2030'
    assert variables['appointmentTime'] == '09:00 AM'
    assert variables['duration'] == '45'
    assert variables['appointmentId'] == 'abc123'
    assert variables['newStatus'] == 'Confirmed'


def test_render_email_and_sms_for_reschedule() -> None:
    variables = appointment_variables(
        make_appointment(),
        service_name='Health Screening',
        provider_name='Dr. Ada Lovelace',
        timezone_name='UTC',
        rescheduleReason='Provider ill',
    )

    email = render_email('appointmentRescheduled', variables)
    sms = render_sms('appointmentRescheduled', variables)

    assert email['subject'] == 'Appointment Rescheduled - Health Screening'
    assert 'Provider ill' in email['html']
    assert '{{' not in email['body']
    assert '{{' not in email['html']
    assert sms.startswith('Your Health Screening appointment has been rescheduled to 01/07/2030 at 02:00 PM')


def test_render_email_drops_empty_reschedule_reason() -> None:
    variables = appointment_variables(
        make_appointment(),
        service_name='Health Screening',
        provider_name='Dr. Ada Lovelace',
        timezone_name='UTC',
        rescheduleReason='',
    )

    assert 'Reason for reschedule' not in render_email('appointmentRescheduled', variables)['html']


def test_render_email_escapes_values_in_html_only() -> None:
    variables = {
        'patientName': '<script>alert(1)</script>',
        'serviceName': 'Check & Go',
        'providerName': 'Dr. Who',
        'appointmentDate': '01/07/2030',
        'appointmentTime': '09:00 AM',
        'rescheduleReason': '<b>moved</b>',
    }

    rendered = render_email('appointmentRescheduled', variables)

    assert '<script>' not in rendered['html']
    assert '&lt;script&gt;alert(1)&lt;/script&gt;' in rendered['html']
    assert 'Check &amp; Go' in rendered['html']
    assert '&lt;b&gt;moved&lt;/b&gt;' in rendered['html']
    assert rendered['body'].startswith('Hello <script>alert(1)</script>,')
    assert rendered['subject'] == 'Appointment Rescheduled - Check & Go'
