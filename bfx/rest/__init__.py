from .client import BitfinexRESTClient
from .errors import AuthError, HttpError, ParamsError, RestError

__all__ = ["BitfinexRESTClient", "AuthError", "HttpError", "ParamsError", "RestError"]
