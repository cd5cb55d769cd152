import email

from unittest.mock import patch, MagicMock

from hostelmate.core.config import settings
from hostelmate.services.email_service import send_leave_approved_email, send_leave_rejected_email
from hostelmate.services.qr_service import render_qr_data_url


def smtp_settings():
    return patch.multiple(
        settings,
        SMTP_HOST="smtp.test.local",
        SMTP_PORT=587,
        SMTP_USER="mailer",
        SMTP_PASSWORD="secret",
    )


@patch("hostelmate.services.email_service.smtplib.SMTP")
def test_send_leave_approved_email(mock_smtp):
    mock_server_instance = MagicMock()
    mock_smtp.return_value.__enter__.return_value = mock_server_instance

    data = {
        "name": "Asha Verma",
        "email": "asha@example.com",
        "student_code": "HM-2025-0042",
        "room_number": "B-214",
        "leave_type": "HOME_VISIT",
        "from_date": "10-06-2025",
        "to_date": "15-06-2025",
        "total_days": 6,
        "admin_comments": "Travel safe",
        "qr_codes": [
            {"purpose": "exit", "qr_image": render_qr_data_url("exit-token"),
             "valid_from": "10-06-2025 00:00", "valid_until": "11-06-2025 00:00"},
            {"purpose": "entry", "qr_image": render_qr_data_url("entry-token"),
             "valid_from": "15-06-2025 00:00", "valid_until": "16-06-2025 00:00"},
        ],
    }

    with smtp_settings():
        send_leave_approved_email(data)

    mock_smtp.assert_called_with("smtp.test.local", 587)
    mock_server_instance.starttls.assert_called()
    mock_server_instance.login.assert_called_with("mailer", "secret")
    mock_server_instance.sendmail.assert_called()

    recipient = mock_server_instance.sendmail.call_args[0][1]
    assert recipient == "asha@example.com"

    # passes ride as inline parts referenced by cid, not data: URLs
    message = email.message_from_string(mock_server_instance.sendmail.call_args[0][2])
    assert message.get_content_type() == "multipart/related"
    html = next(p for p in message.walk() if p.get_content_type() == "text/html").get_payload(decode=True).decode()
    assert "cid:exit-pass" in html
    assert "cid:entry-pass" in html
    assert "data:image" not in html

    images = [p for p in message.walk() if p.get_content_type() == "image/png"]
    assert [p["Content-ID"] for p in images] == ["<exit-pass>", "<entry-pass>"]
    assert all(p.get_payload(decode=True).startswith(b"\x89PNG") for p in images)


@patch("hostelmate.services.email_service.smtplib.SMTP")
def test_send_leave_rejected_email(mock_smtp):
    mock_server_instance = MagicMock()
    mock_smtp.return_value.__enter__.return_value = mock_server_instance

    data = {
        "name": "Ravi Kumar",
        "email": "ravi@example.com",
        "leave_type": "PERSONAL",
        "from_date": "01-07-2025",
        "to_date": "03-07-2025",
        "admin_comments": "Exams scheduled",
    }

    with smtp_settings():
        send_leave_rejected_email(data)

    mock_server_instance.sendmail.assert_called()
    recipient = mock_server_instance.sendmail.call_args[0][1]
    assert recipient == "ravi@example.com"


@patch("hostelmate.services.email_service.smtplib.SMTP")
def test_no_smtp_host_skips_sending(mock_smtp):
    with patch.object(settings, "SMTP_HOST", None):
        send_leave_rejected_email({"name": "X", "email": "x@example.com", "admin_comments": "No"})

    mock_smtp.assert_not_called()


@patch("hostelmate.services.email_service.smtplib.SMTP")
def test_smtp_failure_does_not_raise(mock_smtp):
    mock_smtp.side_effect = ConnectionRefusedError("no server")

    with smtp_settings():
        send_leave_rejected_email({"name": "X", "email": "x@example.com", "admin_comments": "No"})

    mock_smtp.assert_called()
