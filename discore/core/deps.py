"""
Request-scoped dependencies that read application state.
"""
from fastapi import Request

from discore.services.scheduler import AnalysisScheduler
from discore.services.user_analysis import UserAnalyzer


def get_scheduler(request: Request) -> AnalysisScheduler:
    """The scheduler built in the app lifespan."""
    return request.app.state.scheduler


def get_user_analyzer(request: Request) -> UserAnalyzer:
    return request.app.state.user_analyzer
