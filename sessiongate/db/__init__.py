from .session import make_engine, make_session_factory

__all__ = ["make_engine", "make_session_factory"]
