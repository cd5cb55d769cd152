import base64
import smtplib
import os
from email.mime.image import MIMEImage
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart

from jinja2 import Environment, FileSystemLoader, select_autoescape
from loguru import logger

from hostelmate.core.config import settings

TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "templates", "email")

email_env = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    autoescape=select_autoescape(["html", "xml"])
)


def get_template(template_name):
    return email_env.get_template(template_name)


# Helper to send email via SMTP
def send_email_via_smtp(to_email, subject, html_content, inline_images=None):
    """
    inline_images maps a Content-ID to PNG bytes; the HTML refers to each
    one as ``cid:<content-id>``.
    """
    # Only HOST is required; user/pass are optional (Mailpit and friends)
    if not settings.SMTP_HOST:
        logger.warning("SMTP host not configured. Skipping email.")
        return

    try:
        if inline_images:
            msg = MIMEMultipart("related")
            msg.attach(MIMEText(html_content, "html"))
            for cid, png in inline_images.items():
                image = MIMEImage(png, _subtype="png")
                image.add_header("Content-ID", f"<{cid}>")
                image.add_header("Content-Disposition", "inline", filename=f"{cid}.png")
                msg.attach(image)
        else:
            msg = MIMEMultipart("alternative")
            msg.attach(MIMEText(html_content, "html"))

        msg["Subject"] = subject
        msg["From"] = f"{settings.EMAILS_FROM_NAME} <{settings.EMAILS_FROM_EMAIL}>"
        msg["To"] = to_email

        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT) as server:
            server.ehlo()

            # TLS only on submission ports; local catchers on 1025 don't speak it
            if settings.SMTP_PORT in [587, 2525]:
                server.starttls()
                server.ehlo()

            if settings.SMTP_USER and settings.SMTP_PASSWORD:
                server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)

            server.sendmail(settings.EMAILS_FROM_EMAIL, to_email, msg.as_string())

        logger.info(f"Email sent to {to_email}: {subject}")
    except Exception:
        # A notification failure never undoes a leave decision
        logger.exception(f"Failed to send email to {to_email}")


def _inline_qr_images(qr_codes):
    """Swap each data-URL image for a cid reference; returns (codes, images)."""
    codes, images = [], {}
    for qr in qr_codes:
        cid = f"{qr['purpose']}-pass"
        images[cid] = base64.b64decode(qr["qr_image"].split(",", 1)[1])
        codes.append({**qr, "cid": cid})
    return codes, images


# ---------------------------------------------------------
# 1. LEAVE APPROVED (with both gate passes)
# ---------------------------------------------------------
def send_leave_approved_email(data: dict):
    """
    data requires: name, email, leave_type, from_date, to_date, total_days,
    admin_comments, qr_codes (list of dicts: purpose, qr_image, valid_from, valid_until)

    The passes travel as inline image parts; webmail strips data: URLs.
    """
    try:
        qr_codes, images = _inline_qr_images(data.get("qr_codes") or [])
        template = get_template("leave_approved.html")
        context = {
            "name": data.get("name"),
            "student_code": data.get("student_code"),
            "room_number": data.get("room_number"),
            "leave_type": data.get("leave_type"),
            "from_date": data.get("from_date"),
            "to_date": data.get("to_date"),
            "total_days": data.get("total_days"),
            "admin_comments": data.get("admin_comments"),
            "qr_codes": qr_codes,
            "leaves_url": f"{settings.FRONTEND_URL}/student/leaves",
        }
        html_content = template.render(context)
        send_email_via_smtp(
            data.get("email"), "Leave Approved - Your Gate Passes", html_content, inline_images=images
        )
    except Exception:
        logger.exception("Error preparing leave approval email")


# ---------------------------------------------------------
# 2. LEAVE REJECTED
# ---------------------------------------------------------
def send_leave_rejected_email(data: dict):
    try:
        template = get_template("leave_rejected.html")
        context = {
            "name": data.get("name"),
            "leave_type": data.get("leave_type"),
            "from_date": data.get("from_date"),
            "to_date": data.get("to_date"),
            "admin_comments": data.get("admin_comments"),
            "leaves_url": f"{settings.FRONTEND_URL}/student/leaves",
        }
        html_content = template.render(context)
        send_email_via_smtp(data.get("email"), "Leave Application Rejected", html_content)
    except Exception:
        logger.exception("Error preparing leave rejection email")
