"""Email (SMTP) and SMS (Twilio REST) transports."""

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import httpx

from clinicbook.core import config
from clinicbook.core.errors import ExternalServiceError

logger = logging.getLogger(__name__)

TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{account_sid}/Messages.json"


class EmailSender:
    def __init__(
        self,
        host: str = config.SMTP_HOST,
        port: int = config.SMTP_PORT,
        username: str = config.SMTP_MAIL,
        password: str = config.SMTP_PASSWORD,
        from_address: str = config.NOTIFICATION_EMAIL_FROM,
        timeout: float = 30,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_address = from_address
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.host)

    def _connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self.port == 465:
            return smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout)
        server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        server.starttls(context=context)
        return server

    def send(self, to: str, subject: str, body: str, html: str | None = None) -> bool:
        if not self.configured:
            logger.info("SMTP not configured, email to %s not sent: %s", to, subject)
            return True

        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = self.from_address
        message["To"] = to
        message.attach(MIMEText(body, "plain"))
        if html:
            message.attach(MIMEText(html, "html"))

        try:
            server = self._connect()
            try:
                if self.username:
                    server.login(self.username, self.password)
                server.sendmail(self.from_address, [to], message.as_string())
            finally:
                server.quit()
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("SMTP send to %s failed: %s", to, exc)
            raise ExternalServiceError(f"Email delivery failed: {exc}") from exc

        logger.info("Email sent to %s: %s", to, subject)
        return True


class SmsSender:
    def __init__(
        self,
        account_sid: str = config.TWILIO_ACCOUNT_SID,
        auth_token: str = config.TWILIO_AUTH_TOKEN,
        from_number: str = config.TWILIO_FROM_NUMBER,
        client: httpx.Client | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.client = client
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    def send(self, to: str, body: str) -> bool:
        if not self.configured:
            logger.info("Twilio not configured, SMS to %s not sent: %s", to, body)
            return True

        url = TWILIO_MESSAGES_URL.format(account_sid=self.account_sid)
        data = {"To": to, "From": self.from_number, "Body": body}

        try:
            if self.client is not None:
                response = self.client.post(url, auth=(self.account_sid, self.auth_token), data=data)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(url, auth=(self.account_sid, self.auth_token), data=data)
        except httpx.HTTPError as exc:
            logger.error("Twilio request for %s failed: %s", to, exc)
            raise ExternalServiceError(f"SMS delivery failed: {exc}") from exc

        if response.status_code not in (200, 201):
            try:
                error_message = response.json().get("message", "Unknown error")
            except ValueError:
                error_message = response.text or "Unknown error"
            logger.error("Twilio rejected SMS to %s (%s): %s", to, response.status_code, error_message)
            raise ExternalServiceError(f"SMS delivery failed: {error_message}")

        logger.info("SMS sent to %s (sid %s)", to, response.json().get("sid"))
        return True
