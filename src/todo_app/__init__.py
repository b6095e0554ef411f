"""
Todo dashboard backend.

Personal todo lists with derived notifications, live change toasts and
role-based access, served as a FastAPI application (`todo_app.main:app`).
"""

__version__ = "0.1.0"
