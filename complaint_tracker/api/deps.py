from fastapi import Request

from complaint_tracker.services.complaints import ComplaintService


def get_complaint_service(request: Request) -> ComplaintService:
    """FastAPI dependency returning the service wired in create_app."""
    return request.app.state.complaint_service
