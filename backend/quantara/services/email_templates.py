"""HTML bodies for transactional mails. All interpolated values are escaped."""

from html import escape

from quantara.utils import utcnow

_LAYOUT = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{title}</title>
  <style>
    body, html {{ margin: 0; padding: 0; width: 100%; font-family: Arial, sans-serif; background-color: #f4f4f4; }}
    .container {{ max-width: 600px; margin: 40px auto; padding: 20px; background-color: #ffffff;
                  border-radius: 12px; box-shadow: 0 8px 16px rgba(0, 0, 0, 0.2); text-align: center; }}
    h2 {{ color: #333333; }}
    p {{ color: #555555; font-size: 15px; line-height: 1.5; }}
    a.button {{ display: inline-block; margin: 20px 0; padding: 12px 24px; color: #ffffff;
                background-color: #2e75ba; border-radius: 6px; text-decoration: none; }}
    .footer {{ margin-top: 30px; font-size: 12px; color: #999999; }}
  </style>
</head>
<body>
  <div class="container">
    {body}
    <div class="footer">
      <p>&copy; {year} Quantara. All rights reserved.</p>
      <p><a href="{site_url}" style="color: #2e75ba;">Visit our website</a></p>
    </div>
  </div>
</body>
</html>
"""


def _render(title: str, body: str, site_url: str) -> str:
    return _LAYOUT.format(
        title=escape(title),
        body=body,
        year=utcnow().year,
        site_url=escape(site_url, quote=True),
    )


def password_reset_template(username: str, reset_url: str, site_url: str, expires_minutes: int) -> str:
    body = (
        "<h2>Password Reset Request</h2>"
        f"<p>Hello <strong>{escape(username)}</strong>,</p>"
        "<p>You recently requested to reset your password. Click the button below to reset it:</p>"
        f'<a href="{escape(reset_url, quote=True)}" class="button">Reset Password</a>'
        "<p>If you didn't request this, you can safely ignore this email.</p>"
        f"<p>This link will expire in {expires_minutes} minutes.</p>"
    )
    return _render("Password Reset", body, site_url)


def welcome_template(username: str, email: str, password: str, site_url: str) -> str:
    """Sent when an admin creates the account on the user's behalf."""
    body = (
        "<h2>Welcome to Quantara</h2>"
        f"<p>Hello <strong>{escape(username)}</strong>, an account has been created for you.</p>"
        f"<p>Email: <strong>{escape(email)}</strong><br>"
        f"Temporary password: <strong>{escape(password)}</strong></p>"
        "<p>Please sign in and change your password right away.</p>"
        f'<a href="{escape(site_url, quote=True)}" class="button">Sign in</a>'
    )
    return _render("Welcome to Quantara", body, site_url)
