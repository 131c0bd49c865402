from aide.tools.gateway import get_gateway
from aide.tools.registry import ToolContext, register, require_params


"""
CRM capabilities.

What it does:
- Searches contacts by name, email or company
- Creates a contact
Main purpose:
Give task steps and chat tool calls a way to reach the CRM.
"""

@register(
    "search_contacts",
    "Search for contacts in the CRM by name, email, or company.",
    {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "Contact name, email, or company (optional)"},
        },
        "required": [],
    },
)
async def search_contacts(ctx: ToolContext, params: dict) -> dict:
    return await get_gateway().call("crm", "search_contacts", ctx.user_id, {"query": str(params.get("query") or "")})


@register(
    "create_hubspot_contact",
    "Create a new contact in the CRM.",
    {
        "type": "object",
        "properties": {
            "email": {"type": "string"},
            "first_name": {"type": "string"},
            "last_name": {"type": "string"},
            "company": {"type": "string"},
            "phone": {"type": "string"},
        },
        "required": ["email"],
    },
)
async def create_hubspot_contact(ctx: ToolContext, params: dict) -> dict:
    require_params(params, "email")
    fields = ("email", "first_name", "last_name", "company", "phone")
    payload = {k: params[k] for k in fields if params.get(k)}
    return await get_gateway().call("crm", "create_contact", ctx.user_id, payload)
