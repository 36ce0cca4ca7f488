from lingobridge.database.session_manager import SessionManager

__all__ = ["SessionManager"]
