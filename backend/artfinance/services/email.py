"""Email service for registration, sign-in and login notification emails."""
import logging
from typing import Optional
from artfinance.config import settings
from artfinance.models.pending_auth_request import AuthRequestKind
from artfinance.services.registration import CreatedAuthRequest

logger = logging.getLogger(__name__)

APP_NAME = "Art Finance Hub"


def _layout(heading: str, body_html: str) -> str:
    return f"""
        <html>
            <body style="font-family: 'Segoe UI', Arial, sans-serif; background-color: #f4f4f4; padding: 20px;">
                <div style="max-width: 600px; margin: 0 auto; background-color: white; padding: 40px; border-radius: 8px; box-shadow: 0 2px 8px rgba(0,0,0,0.1);">
                    <h2 style="color: #1D2F2E; margin-bottom: 20px;">{heading}</h2>
                    {body_html}
                    <p style="color: #999; font-size: 12px; margin-top: 30px; border-top: 1px solid #eee; padding-top: 20px;">
                        {APP_NAME}<br>
                        This is an automated message, please do not reply to this email.
                    </p>
                </div>
            </body>
        </html>
        """


def _link_block(url: str, label: str, expiry_notice: str) -> str:
    return f"""
                    <p style="margin: 30px 0;">
                        <a href="{url}" style="background-color: #F5A54A; color: #1D2F2E; padding: 14px 34px; text-decoration: none; border-radius: 24px; display: inline-block; font-weight: bold;">
                            {label}
                        </a>
                    </p>
                    <p style="color: #666; font-size: 14px;">
                        Or copy and paste this link into your browser: <br>
                        <code style="background-color: #f5f5f5; padding: 10px; border-radius: 3px; word-break: break-all;">
                            {url}
                        </code>
                    </p>
                    <p style="color: #1D2F2E; font-size: 14px; background-color: #E8F7F4; border-left: 4px solid #2E9A85; padding: 16px;">
                        <strong>Important:</strong> {expiry_notice}
                    </p>
    """


def expiry_notice(kind: AuthRequestKind) -> str:
    action = "complete your registration" if kind == AuthRequestKind.REGISTRATION else "sign in"
    return (
        f"This link will expire in {settings.token_ttl_hours} hours for security reasons. "
        f"You can {action} on any device (phone, tablet, or computer)."
    )


class EmailService:
    """Handles email sending in dev and production modes."""

    def __init__(self, mode: Optional[str] = None):
        self.mode = mode or settings.email_mode
        if self.mode == "prod":
            from sendgrid import SendGridAPIClient
            self.sendgrid_client = SendGridAPIClient(settings.sendgrid_api_key)
        else:
            self.sendgrid_client = None

    async def send_registration_email(self, email: str, name: Optional[str], verification_url: str) -> bool:
        """Send the link that completes a registration."""
        subject = f"Complete Your Registration - {APP_NAME}"
        notice = expiry_notice(AuthRequestKind.REGISTRATION)
        greeting = f"Hi {name}," if name else "Hi,"

        html_content = _layout(
            f"Welcome to {APP_NAME}!",
            f"""
                    <p style="color: #666; font-size: 16px; line-height: 1.6;">{greeting}</p>
                    <p style="color: #666; font-size: 16px; line-height: 1.6;">
                        Thanks for creating an account! Complete your registration with the link below:
                    </p>
                    {_link_block(verification_url, "Complete Registration", notice)}
                    <p style="color: #999; font-size: 14px;">
                        If you didn't create this account, you can safely ignore this email.
                    </p>
            """,
        )

        text_content = f"""
Welcome to {APP_NAME}!

{greeting}

Complete your registration by visiting this link:
{verification_url}

Important: {notice}

If you didn't create this account, you can safely ignore this email.
"""

        return await self._send_email(email, subject, text_content, html_content)

    async def send_sign_in_email(self, email: str, name: Optional[str], sign_in_url: str) -> bool:
        """Send the link that signs an existing user in."""
        subject = f"Sign In to Your Account - {APP_NAME}"
        notice = expiry_notice(AuthRequestKind.SIGN_IN)
        greeting = f"Hi {name}," if name else "Hi,"

        html_content = _layout(
            "Sign in to your account",
            f"""
                    <p style="color: #666; font-size: 16px; line-height: 1.6;">{greeting}</p>
                    <p style="color: #666; font-size: 16px; line-height: 1.6;">
                        Click the link below to sign in:
                    </p>
                    {_link_block(sign_in_url, "Sign In", notice)}
                    <p style="color: #999; font-size: 14px;">
                        If you didn't request this, you can safely ignore this email.
                    </p>
            """,
        )

        text_content = f"""
Sign in to {APP_NAME}

{greeting}

Sign in by visiting this link:
{sign_in_url}

Important: {notice}

If you didn't request this, you can safely ignore this email.
"""

        return await self._send_email(email, subject, text_content, html_content)

    async def send_auth_request_email(self, created: CreatedAuthRequest) -> bool:
        """Send the email matching a freshly created pending request."""
        if created.kind == AuthRequestKind.REGISTRATION:
            return await self.send_registration_email(created.email, created.name, created.verification_url)
        return await self.send_sign_in_email(created.email, created.name, created.verification_url)

    async def send_welcome_email(self, email: str, name: Optional[str]) -> bool:
        """Greet a user whose account and profile were just created."""
        subject = f"Welcome to {APP_NAME}!"
        greeting = f"Hi {name}," if name else "Hi,"

        html_content = _layout(
            f"Welcome to {APP_NAME}!",
            f"""
                    <p style="color: #666; font-size: 16px; line-height: 1.6;">{greeting}</p>
                    <p style="color: #666; font-size: 16px; line-height: 1.6;">
                        Thank you for joining {APP_NAME}! Your account is now active and ready to use.
                    </p>
                    <ul style="color: #666; font-size: 16px; line-height: 1.8;">
                        <li>Track your income and expenses</li>
                        <li>Manage your artist profile</li>
                        <li>View financial reports and analytics</li>
                    </ul>
                    <p style="color: #666; font-size: 16px; line-height: 1.6;">
                        Sign in any time with a link sent to this address.
                    </p>
            """,
        )

        text_content = f"""
Welcome to {APP_NAME}!

{greeting}

Thank you for joining {APP_NAME}! Your account is now active and ready to use.

- Track your income and expenses
- Manage your artist profile
- View financial reports and analytics

Sign in any time with a link sent to this address.
"""

        return await self._send_email(email, subject, text_content, html_content)

    async def send_login_notification(
        self,
        email: str,
        name: Optional[str],
        device: Optional[str],
        ip_address: Optional[str],
    ) -> bool:
        """Tell a user their account was signed in from a new location."""
        subject = f"New sign-in to your {APP_NAME} account"
        device = device or "Unknown device"
        ip_address = ip_address or "Unknown IP"
        greeting = f"Hi {name}," if name else "Hi,"

        html_content = _layout(
            "New sign-in detected",
            f"""
                    <p style="color: #666; font-size: 16px; line-height: 1.6;">{greeting}</p>
                    <ul style="color: #666; font-size: 16px; line-height: 1.8;">
                        <li><strong>Device:</strong> {device}</li>
                        <li><strong>IP address:</strong> {ip_address}</li>
                    </ul>
                    <p style="color: #666; font-size: 16px; line-height: 1.6;">
                        If this wasn't you, request a new sign-in link to secure your account.
                    </p>
            """,
        )

        text_content = f"""
New sign-in detected

{greeting}

Device: {device}
IP address: {ip_address}

If this wasn't you, request a new sign-in link to secure your account.
"""

        return await self._send_email(email, subject, text_content, html_content)

    async def _send_email(self, to_email: str, subject: str, text_content: str, html_content: str) -> bool:
        """Internal method to send email via SendGrid or dev console."""
        if self.mode == "dev":
            logger.info(f"[DEV MODE] Email to {to_email}: {subject}")
            logger.info(f"[DEV MODE] Content:\n{text_content}")
            return True

        try:
            from sendgrid.helpers.mail import Mail, Email, To, Content

            mail = Mail(
                from_email=Email(settings.sender_email, settings.sender_name),
                to_emails=To(to_email),
                subject=subject,
                plain_text_content=Content("text/plain", text_content),
                html_content=Content("text/html", html_content)
            )

            response = self.sendgrid_client.send(mail)

            if 200 <= response.status_code < 300:
                logger.info(f"Email sent to {to_email}: {subject}")
                return True
            else:
                logger.error(f"Failed to send email to {to_email}: {response.status_code}")
                return False
        except Exception as e:
            logger.error(f"Error sending email to {to_email}: {str(e)}")
            return False


# Global email service instance
email_service = EmailService()


def get_email_service() -> EmailService:
    """FastAPI dependency, overridden in tests."""
    return email_service
