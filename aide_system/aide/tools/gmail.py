from aide.tools.gateway import get_gateway
from aide.tools.registry import ToolContext, register, require_params


"""
Gmail capabilities.

What it does:
- Searches the user's mailbox by content, subject or sender
- Sends an email on the user's behalf
Main purpose:
Give task steps and chat tool calls a way to reach the mailbox.
"""

@register(
    "search_emails",
    "Search through Gmail emails by content, sender, subject, or keywords.",
    {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "Email content, subject or keywords"},
            "sender": {"type": "string", "description": "Filter by sender email or name (optional)"},
            "limit": {"type": "integer", "description": "Maximum number of emails to return (default: 10)"},
        },
        "required": [],
    },
)
async def search_emails(ctx: ToolContext, params: dict) -> dict:
    payload = {
        "query": str(params.get("query") or ""),
        "sender": str(params.get("sender") or ""),
        "limit": int(params.get("limit") or 10),
    }
    return await get_gateway().call("gmail", "search_emails", ctx.user_id, payload)


@register(
    "send_email",
    "Send an email to a contact.",
    {
        "type": "object",
        "properties": {
            "to_email": {"type": "string", "description": "Recipient email address"},
            "subject": {"type": "string", "description": "Email subject line"},
            "body": {"type": "string", "description": "Email body content"},
        },
        "required": ["to_email", "subject", "body"],
    },
)
async def send_email(ctx: ToolContext, params: dict) -> dict:
    require_params(params, "to_email", "subject", "body")
    payload = {k: params[k] for k in ("to_email", "subject", "body")}
    if ctx.task_id:
        payload["task_id"] = ctx.task_id
    return await get_gateway().call("gmail", "send_email", ctx.user_id, payload)
