"""
HTML pages for browser callers.

Every value that can originate from a request (notices, usernames, client
context) is escaped before it reaches the markup.
"""

from html import escape
from typing import Iterable, List, Optional

from fastapi import Response
from fastapi.responses import HTMLResponse, JSONResponse

from app.errors import BrokerError
from app.identity import PublicPrincipal
from app.models import ErrorResponse
from app.auth.gate import ClientContext, with_query


_STYLE = """
    * { margin: 0; padding: 0; box-sizing: border-box; }
    body {
        font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Helvetica, Arial, sans-serif;
        background: linear-gradient(135deg, #667eea 0%, #764ba2 100%);
        min-height: 100vh;
        display: flex;
        align-items: center;
        justify-content: center;
        padding: 20px;
    }
    .container {
        background: white;
        border-radius: 12px;
        padding: 40px;
        max-width: 500px;
        width: 100%;
        box-shadow: 0 10px 40px rgba(0,0,0,0.2);
    }
    h1 { color: #1f2937; font-size: 24px; margin-bottom: 16px; text-align: center; }
    label { display: block; color: #4b5563; font-size: 14px; margin: 12px 0 4px; }
    input { width: 100%; padding: 10px; border: 1px solid #d1d5db; border-radius: 6px; font-size: 15px; }
    .button {
        display: inline-block;
        background: #667eea;
        color: white;
        padding: 12px 28px;
        border: none;
        border-radius: 8px;
        text-decoration: none;
        font-weight: 600;
        font-size: 16px;
        margin-top: 20px;
        cursor: pointer;
    }
    .button:hover { background: #5568d3; }
    .notice { background: #eef2ff; color: #3730a3; padding: 12px; border-radius: 8px; margin-bottom: 12px; font-size: 14px; }
    .error { background: #fef2f2; color: #b91c1c; padding: 12px; border-radius: 8px; margin-bottom: 12px; font-size: 14px; }
    .message { color: #6b7280; font-size: 16px; line-height: 1.6; margin-bottom: 24px; text-align: center; }
    .providers { margin-top: 24px; padding-top: 24px; border-top: 1px solid #e5e7eb; }
    .providers a { display: block; margin-top: 8px; color: #4f46e5; }
    .footer { margin-top: 24px; color: #9ca3af; font-size: 13px; text-align: center; }
    dt { color: #9ca3af; font-size: 13px; margin-top: 12px; }
    dd { color: #1f2937; font-size: 16px; }
"""


def _page(title: str, body: str, status_code: int = 200) -> HTMLResponse:
    html_content = f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{escape(title)}</title>
    <style>{_STYLE}</style>
</head>
<body>
    <div class="container">
        {body}
    </div>
</body>
</html>
"""
    return HTMLResponse(content=html_content, status_code=status_code)


def _banners(notices: Iterable[str], error: Optional[str]) -> str:
    parts = [f'<div class="notice">{escape(n)}</div>' for n in notices]
    if error:
        parts.append(f'<div class="error">{escape(error)}</div>')
    return "\n".join(parts)


def _hidden_context(client_context: ClientContext) -> str:
    return "\n".join(
        f'<input type="hidden" name="{name}" value="{escape(value, quote=True)}">'
        for name, value in client_context.query().items()
    )


def _provider_links(providers: List[str], client_context: ClientContext) -> str:
    if not providers:
        return ""
    links = "\n".join(
        f'<a href="{escape(with_query(f"/auth/{p}", client_context.query()), quote=True)}">'
        f"Continue with {escape(p.capitalize())}</a>"
        for p in providers
    )
    return f'<div class="providers">{links}</div>'


def render_login_page(
    client_context: ClientContext,
    providers: List[str],
    notices: Iterable[str] = (),
    error: Optional[str] = None,
    email: str = "",
    status_code: int = 200,
) -> HTMLResponse:
    """
    Render the local login form.

    Args:
        client_context: Pair forwarded as hidden fields and on provider links
        providers: Enabled federated providers
        notices: One-shot messages carried in the query
        error: Failure from the previous attempt
        email: Value to prefill
        status_code: 200, or the failure status on a re-prompt
    """
    register_href = escape(with_query("/auth/register", client_context.query()), quote=True)
    body = f"""
        <h1>Sign in</h1>
        {_banners(notices, error)}
        <form method="post" action="/auth/login">
            {_hidden_context(client_context)}
            <label for="email">Email</label>
            <input id="email" name="email" type="email" value="{escape(email, quote=True)}" required>
            <label for="password">Password</label>
            <input id="password" name="password" type="password" required>
            <button class="button" type="submit">Sign in</button>
        </form>
        {_provider_links(providers, client_context)}
        <div class="footer"><a href="{register_href}">Create an account</a></div>
    """
    return _page("Sign in", body, status_code)


def render_register_page(
    client_context: ClientContext,
    providers: List[str],
    notices: Iterable[str] = (),
    error: Optional[str] = None,
    username: str = "",
    email: str = "",
    status_code: int = 200,
) -> HTMLResponse:
    login_href = escape(with_query("/auth/login", client_context.query()), quote=True)
    body = f"""
        <h1>Create an account</h1>
        {_banners(notices, error)}
        <form method="post" action="/auth/register">
            {_hidden_context(client_context)}
            <label for="username">Username</label>
            <input id="username" name="username" value="{escape(username, quote=True)}" required>
            <label for="email">Email</label>
            <input id="email" name="email" type="email" value="{escape(email, quote=True)}" required>
            <label for="password">Password</label>
            <input id="password" name="password" type="password" required>
            <button class="button" type="submit">Register</button>
        </form>
        {_provider_links(providers, client_context)}
        <div class="footer"><a href="{login_href}">Already registered? Sign in</a></div>
    """
    return _page("Register", body, status_code)


def render_profile_page(principal: PublicPrincipal, notices: Iterable[str] = ()) -> HTMLResponse:
    """Render the authenticated landing page."""
    methods = (["password"] if principal.has_password else []) + list(principal.providers)
    providers = ", ".join(methods)
    avatar = (
        f'<p style="text-align:center"><img src="{escape(principal.display_image_url, quote=True)}" '
        f'alt="" width="80" height="80" style="border-radius:50%"></p>'
        if principal.display_image_url else ""
    )
    body = f"""
        <h1>Welcome, {escape(principal.username)}</h1>
        {_banners(notices, None)}
        {avatar}
        <dl>
            <dt>Email</dt><dd>{escape(principal.email)}</dd>
            <dt>Sign-in methods</dt><dd>{escape(providers)}</dd>
            <dt>Member since</dt><dd>{escape(principal.created_at.strftime("%Y-%m-%d"))}</dd>
        </dl>
        <p style="text-align:center"><a href="/auth/logout" class="button">Sign out</a></p>
    """
    return _page("Profile", body)


def render_error_page(
    title: str,
    message: str,
    show_retry: bool = True,
    status_code: int = 400,
) -> HTMLResponse:
    """
    Render error page for sign-in failures.

    Args:
        title: Error title
        message: Error message (no PII, no untrusted URLs)
        show_retry: Whether to show a link back to the login page
        status_code: HTTP status code
    """
    retry_button = '<p style="text-align:center"><a href="/auth/login" class="button">Try Again</a></p>' if show_retry else ""
    body = f"""
        <h1>{escape(title)}</h1>
        <p class="message">{escape(message)}</p>
        {retry_button}
        <div class="footer"><p>Need help? Contact your system administrator.</p></div>
    """
    return _page(title, body, status_code)


ERROR_TITLES = {
    "invalid_credentials": "Sign-in Failed",
    "unknown_client": "Cannot Complete Sign-in",
    "invalid_redirect": "Cannot Complete Sign-in",
    "provider_not_configured": "Sign-in Unavailable",
    "unknown_provider": "Unknown Sign-in Method",
    "state_invalid": "Sign-in Expired",
    "auth_failed": "Authentication Failed",
}


def render_broker_error(exc: BrokerError, programmatic: bool) -> Response:
    """
    Render a broker error as JSON for programmatic callers, or as an HTML
    error page for browsers. The message is always user-safe.
    """
    if programmatic:
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=exc.code, message=exc.message).model_dump(),
        )
    return render_error_page(
        title=ERROR_TITLES.get(exc.code, "Sign-in Error"),
        message=exc.message,
        show_retry=exc.code != "provider_not_configured",
        status_code=exc.status_code,
    )
