from pydantic import BaseModel


def format_sse(event: BaseModel) -> str:
    payload = event.model_dump_json()
    event_type = getattr(event, "type", "message")
    return f"event: {event_type}\ndata: {payload}\n\n"
