from vivaro.web.app import VivaroServer, create_app, error_middleware

__all__ = ["VivaroServer", "create_app", "error_middleware"]
