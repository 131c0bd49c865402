from aide.tools.gateway import get_gateway
from aide.tools.registry import ToolContext, register, require_params


"""
Calendar capabilities.

What it does:
- Lists free slots in a date range
- Schedules meetings with attendees
- Lists upcoming events
Main purpose:
Give task steps and chat tool calls a way to reach the calendar.
"""

@register(
    "get_available_time_slots",
    "Get available time slots for scheduling meetings.",
    {
        "type": "object",
        "properties": {
            "start_date": {"type": "string", "description": "Start date (YYYY-MM-DD)"},
            "end_date": {"type": "string", "description": "End date (YYYY-MM-DD)"},
            "duration_minutes": {"type": "integer", "description": "Meeting duration in minutes (default: 60)"},
        },
        "required": ["start_date", "end_date"],
    },
)
async def get_available_time_slots(ctx: ToolContext, params: dict) -> dict:
    require_params(params, "start_date", "end_date")
    payload = {
        "start_date": params["start_date"],
        "end_date": params["end_date"],
        "duration_minutes": int(params.get("duration_minutes") or 60),
    }
    return await get_gateway().call("calendar", "available_slots", ctx.user_id, payload)


@register(
    "schedule_meeting",
    "Schedule a meeting with one or more attendees.",
    {
        "type": "object",
        "properties": {
            "title": {"type": "string", "description": "Meeting title"},
            "start_time": {"type": "string", "description": "Start time (ISO 8601)"},
            "end_time": {"type": "string", "description": "End time (ISO 8601)"},
            "attendee_emails": {"type": "array", "items": {"type": "string"}},
            "description": {"type": "string", "description": "Meeting description"},
        },
        "required": ["title", "start_time", "end_time", "attendee_emails"],
    },
)
async def schedule_meeting(ctx: ToolContext, params: dict) -> dict:
    require_params(params, "title", "start_time", "end_time", "attendee_emails")
    attendees = params["attendee_emails"]
    if isinstance(attendees, str):
        attendees = [a.strip() for a in attendees.split(",") if a.strip()]
    payload = {
        "title": params["title"],
        "start_time": params["start_time"],
        "end_time": params["end_time"],
        "attendee_emails": attendees,
        "description": str(params.get("description") or ""),
    }
    return await get_gateway().call("calendar", "create_event", ctx.user_id, payload)


@register(
    "get_upcoming_events",
    "Get upcoming calendar events.",
    {
        "type": "object",
        "properties": {
            "days_ahead": {"type": "integer", "description": "How many days to look ahead (default: 7)"},
        },
        "required": [],
    },
)
async def get_upcoming_events(ctx: ToolContext, params: dict) -> dict:
    days = int(params.get("days_ahead") or 7)
    return await get_gateway().call("calendar", "upcoming_events", ctx.user_id, {"days_ahead": days})
