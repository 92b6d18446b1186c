"""Transactional email delivery through the Brevo API"""

import logging
from typing import List, Optional

import sib_api_v3_sdk
from sib_api_v3_sdk.rest import ApiException

from config import Config

logger = logging.getLogger(__name__)


class EmailService:
    """Thin wrapper around Brevo's transactional email endpoint"""

    def __init__(self):
        api_key = Config.BREVO_API_KEY
        self.enabled = bool(api_key)
        self.api_instance = None

        if not self.enabled:
            return

        configuration = sib_api_v3_sdk.Configuration()
        configuration.api_key["api-key"] = api_key
        self.api_instance = sib_api_v3_sdk.TransactionalEmailsApi(
            sib_api_v3_sdk.ApiClient(configuration)
        )

    def send_email(
        self,
        to_email: str,
        subject: str,
        text_content: Optional[str] = None,
        html_content: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> bool:
        """
        Send a single transactional email

        Returns:
            bool: True if Brevo accepted the message, False otherwise
        """
        if not self.enabled or self.api_instance is None:
            logger.error(
                f"❌ EMAIL_DISABLED: cannot send '{subject}' to {to_email} - "
                f"FIX: set BREVO_API_KEY to enable email delivery"
            )
            return False

        try:
            send_smtp_email = sib_api_v3_sdk.SendSmtpEmail(
                to=[sib_api_v3_sdk.SendSmtpEmailTo(email=to_email)],
                sender=sib_api_v3_sdk.SendSmtpEmailSender(
                    email=Config.FROM_EMAIL, name=Config.FROM_NAME
                ),
                subject=subject,
                html_content=html_content or _format_html_message(text_content or ""),
                text_content=text_content,
                tags=tags,
            )
            api_response = self.api_instance.send_transac_email(send_smtp_email)
            logger.info(f"✅ EMAIL_SENT: '{subject}' to {to_email} - Message ID: {api_response.message_id}")
            return True

        except ApiException as e:
            logger.error(f"❌ EMAIL_FAILED: '{subject}' to {to_email}: {e}")
            return False


def _format_html_message(text_message: str) -> str:
    """Convert plain text message to simple HTML format"""
    html_message = text_message.replace('\n', '<br>')
    return f"""
    <html>
    <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
        <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
            {html_message}
        </div>
    </body>
    </html>
    """
