"""Plain-text follow-up emails over SMTP."""

import logging
from email.message import EmailMessage
from email.utils import formataddr

import aiosmtplib

logger = logging.getLogger(__name__)

TEMPLATES = {
    "similar_options": {
        "subject": "Similar options to the {product} - {business}",
        "body": """Hi {name},

Thanks for taking the time to chat with {agent} today. As promised, here are
some options similar to the {product} that we currently have available.

Reply to this email or give us a call and we'll set up a viewing or a test
drive whenever suits you.

Best regards,
{agent}
{business}
""",
    },
    "appointment_confirmation": {
        "subject": "Your appointment for the {product} - {business}",
        "body": """Hi {name},

Thanks for speaking with {agent} today. We've noted your request to come in
and see the {product}{time_clause}. A member of our team will be in touch to
confirm the exact time.

Best regards,
{agent}
{business}
""",
    },
}


class _Defaults(dict):
    def __missing__(self, key):
        return ""


def render_template(template_name: str, data: dict) -> tuple[str, str]:
    """Return (subject, body). Raises KeyError for an unknown template."""
    template = TEMPLATES[template_name]
    values = _Defaults(data)
    when = data.get("appointment_time")
    values["time_clause"] = f" ({when})" if when else ""
    return template["subject"].format_map(values), template["body"].format_map(values)


class EmailSender:
    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        from_email: str = "",
        from_name: str = "",
        start_tls: bool = True,
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_email = from_email or username
        self.from_name = from_name
        self.start_tls = start_tls
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.host and self.from_email)

    def build_message(self, to: str, template_name: str, data: dict) -> EmailMessage:
        subject, body = render_template(template_name, data)
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = formataddr((self.from_name, self.from_email)) if self.from_name else self.from_email
        msg["To"] = to
        msg.set_content(body)
        return msg

    async def send(self, to: str, template_name: str, data: dict) -> dict:
        """Send one templated email. Never raises; returns ``{"success": bool, ...}``."""
        if not self.enabled:
            logger.warning("Email sender not configured, skipping %s email to %s", template_name, to)
            return {"success": False, "error": "email sender not configured"}

        try:
            msg = self.build_message(to, template_name, data)
        except KeyError as e:
            logger.error("Unknown email template %s: %s", template_name, e)
            return {"success": False, "error": f"unknown template {template_name}"}

        try:
            await aiosmtplib.send(
                msg,
                hostname=self.host,
                port=self.port,
                username=self.username or None,
                password=self.password or None,
                start_tls=self.start_tls,
                timeout=self.timeout,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error("Failed to send %s email to %s: %s", template_name, to, e)
            return {"success": False, "error": str(e)}

        logger.info("Sent %s email to %s", template_name, to)
        return {"success": True}
