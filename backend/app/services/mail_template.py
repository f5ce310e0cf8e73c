"""
HTML body for verification notifications.

Environment variables
---------------------
MAIL_SUBJECT        Subject line.
MAIL_ORGANIZATION   Organisation named in the body and signature.
MAIL_DEADLINE       Free-text deadline shown to the recipient (default: "within one week").
"""

import html
import os
import re
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

MAIL_SUBJECT = os.getenv(
    "MAIL_SUBJECT",
    "Mandatory: Physical Verification of Company-Issued Laptops",
)
MAIL_ORGANIZATION = os.getenv("MAIL_ORGANIZATION", "Asset Management Team")
MAIL_DEADLINE = os.getenv("MAIL_DEADLINE", "within one week")


def display_name(email: str) -> str:
    """
    Derive a greeting name from an email local part.

    "john.doe_x@corp.com" -> "John Doe X"
    """
    local = (email or "").split("@")[0]
    words = [w for w in re.split(r"[._]+", local) if w]
    return " ".join(w[:1].upper() + w[1:] for w in words) or local


def render_verification_email(
    email: str,
    link: str,
    manager_email: Optional[str] = None,
) -> tuple[str, str]:
    """
    Return (subject, html_body) for one recipient.

    When ``manager_email`` is given the body tells the employee their manager
    has been copied.
    """
    name = html.escape(display_name(email))
    org = html.escape(MAIL_ORGANIZATION)
    href = html.escape(link, quote=True)

    manager_line = ""
    if manager_email:
        manager_line = (
            "<p>This is a reminder to verify your laptop details. "
            f"Your manager ({html.escape(manager_email)}) has been copied on this message.</p>"
        )

    body = f"""
<div style="font-family: Arial, sans-serif; color: #333; line-height: 1.6;">
  <p>Dear {name},</p>
  <p>As part of the annual asset verification, {org} is conducting a mandatory
  physical verification of all company-issued laptops.</p>
  {manager_line}
  <p><strong>Required action:</strong></p>
  <ul style="margin: 0; padding-left: 20px;">
    <li>Verify the laptop serial number</li>
    <li>Confirm make and model</li>
    <li>Report the current condition of the laptop</li>
  </ul>
  <p><strong>Finding the serial number on Windows:</strong> press <strong>Windows + R</strong>,
  type <strong>cmd</strong>, then run <strong>wmic bios get serialnumber</strong>.</p>
  <p>Please submit the verification form {html.escape(MAIL_DEADLINE)}.</p>
  <p style="margin: 20px 0;">
    <a href="{href}" style="display: inline-block; background-color: #1a73e8; color: #fff; padding: 10px 20px; text-decoration: none; border-radius: 5px; font-weight: bold;">Complete the Verification Form</a>
  </p>
  <p>Regards,<br><strong>{org}</strong></p>
</div>
"""
    return MAIL_SUBJECT, body
