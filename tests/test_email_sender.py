import pytest
import aiosmtplib
from unittest.mock import AsyncMock, patch

from autodial.email_sender import EmailSender, render_template

DATA = {
    "name": "Jane",
    "product": "2021 Mazda CX-5",
    "agent": "Sarah",
    "business": "Premier Auto",
}


@pytest.fixture
def sender():
    return EmailSender(
        host="smtp.example.com",
        username="sales@premierauto.example",
        password="secret",
        from_name="Premier Auto",
    )


class TestTemplates:
    def test_similar_options(self):
        subject, body = render_template("similar_options", DATA)
        assert subject == "Similar options to the 2021 Mazda CX-5 - Premier Auto"
        assert body.startswith("Hi Jane,")
        assert "Sarah\nPremier Auto" in body

    def test_appointment_time_clause(self):
        _, body = render_template("appointment_confirmation", {**DATA, "appointment_time": "friday at 10am"})
        assert "the 2021 Mazda CX-5 (friday at 10am)." in body
        _, body = render_template("appointment_confirmation", DATA)
        assert "the 2021 Mazda CX-5. A member" in body

    def test_missing_values_render_empty(self):
        subject, _ = render_template("similar_options", {"business": "Premier Auto"})
        assert subject == "Similar options to the  - Premier Auto"

    def test_unknown_template(self):
        with pytest.raises(KeyError):
            render_template("newsletter", DATA)


class TestSend:
    @pytest.mark.asyncio
    async def test_sends_plain_text(self, sender):
        with patch("autodial.email_sender.aiosmtplib.send", new_callable=AsyncMock) as send:
            result = await sender.send("jane@example.com", "similar_options", DATA)
        assert result == {"success": True}
        msg = send.await_args.args[0]
        assert msg["To"] == "jane@example.com"
        assert msg["From"] == "Premier Auto <sales@premierauto.example>"
        assert msg.get_content_type() == "text/plain"
        kwargs = send.await_args.kwargs
        assert kwargs["hostname"] == "smtp.example.com"
        assert kwargs["port"] == 587
        assert kwargs["start_tls"] is True

    @pytest.mark.asyncio
    async def test_smtp_failure_is_returned(self, sender):
        with patch(
            "autodial.email_sender.aiosmtplib.send",
            new_callable=AsyncMock,
            side_effect=aiosmtplib.SMTPException("relay denied"),
        ):
            result = await sender.send("jane@example.com", "similar_options", DATA)
        assert result["success"] is False
        assert "relay denied" in result["error"]

    @pytest.mark.asyncio
    async def test_unconfigured_sender_skips(self):
        with patch("autodial.email_sender.aiosmtplib.send", new_callable=AsyncMock) as send:
            result = await EmailSender(host="").send("jane@example.com", "similar_options", DATA)
        assert result["success"] is False
        send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_template_is_returned(self, sender):
        with patch("autodial.email_sender.aiosmtplib.send", new_callable=AsyncMock) as send:
            result = await sender.send("jane@example.com", "newsletter", DATA)
        assert result["success"] is False
        send.assert_not_awaited()
