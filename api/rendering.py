"""
Callback response rendering — turns a LoginAttempt into JSON, a frontend
redirect, or the small popup page.  Tokens are never rendered.
"""

from __future__ import annotations

import html
import json
from typing import Any, Dict
from urllib.parse import urlencode

from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from broker.exchange import LoginAttempt


def attempt_payload(attempt: LoginAttempt) -> Dict[str, Any]:
    provider = attempt.provider.value if attempt.provider else None
    if attempt.succeeded and attempt.account is not None:
        return {
            "status": "linked",
            "provider": provider,
            "account": attempt.account.public_view(),
            "identity_missing": attempt.identity_missing,
        }
    err = attempt.error
    return {
        "status": "failed",
        "provider": provider,
        "error": err.message if err else "Authentication failed",
        "error_type": err.error_type if err else "broker_error",
    }


def render_json(attempt: LoginAttempt) -> JSONResponse:
    status_code = 200 if attempt.succeeded else (attempt.error.status_code if attempt.error else 400)
    return JSONResponse(attempt_payload(attempt), status_code=status_code)


def render_redirect(attempt: LoginAttempt, frontend_url: str) -> RedirectResponse:
    payload = attempt_payload(attempt)
    if attempt.succeeded:
        params = {
            "status": "linked",
            "provider": payload["provider"] or "",
            "account_id": payload["account"]["account_id"],
            "username": payload["account"]["username"] or "",
        }
    else:
        params = {
            "status": "failed",
            "provider": payload["provider"] or "",
            "error": payload["error"],
            "error_type": payload["error_type"],
        }
    return RedirectResponse(f"{frontend_url}?{urlencode(params)}", status_code=302)


def render_popup(attempt: LoginAttempt) -> HTMLResponse:
    """
    Small HTML page shown in the OAuth popup after redirect.
    Sends a postMessage to the opener and auto-closes.
    """
    payload = attempt_payload(attempt)
    success = attempt.succeeded
    provider = payload["provider"] or "account"
    if success:
        label = payload["account"]["username"] or provider
        message = f"Connected {provider} as {label}"
    else:
        message = f"Connection failed: {payload['error']}"

    status_text = "Connected!" if success else "Failed"
    color = "#00d992" if success else "#ef4444"
    notify = json.dumps({
        "type": "oauth-callback",
        "provider": payload["provider"],
        "success": success,
        "message": message,
    }).replace("<", "\\u003c")

    content = f"""<!DOCTYPE html>
<html>
<head>
    <title>{html.escape(provider)} {status_text}</title>
    <style>
        body {{
            font-family: system-ui, sans-serif;
            background: #0b0d11; color: #e4e7ee;
            display: flex; align-items: center; justify-content: center;
            height: 100vh; margin: 0;
        }}
        .card {{
            text-align: center; padding: 40px;
            background: #12151b; border: 1px solid #1f2330;
            border-radius: 12px; max-width: 400px;
        }}
        h2 {{ color: {color}; margin: 16px 0 8px; }}
        p {{ color: #a0a6b8; font-size: 0.85rem; }}
    </style>
</head>
<body>
    <div class="card">
        <h2>{status_text}</h2>
        <p>{html.escape(message)}</p>
        <p>This window will close automatically…</p>
    </div>
    <script>
        if (window.opener) {{
            window.opener.postMessage({notify}, window.location.origin);
        }}
        setTimeout(() => window.close(), 2000);
    </script>
</body>
</html>"""
    return HTMLResponse(content=content, status_code=200)
