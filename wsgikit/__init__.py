"""HTTP middleware over plain request/response objects: recovery, request ids, real IP, access guard, body limits, CORS."""

__version__ = "0.1.0"