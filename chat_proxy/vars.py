import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "chat-web-proxy")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")

# Defaults for the proxy settings read by ProxyConfig.from_env()
DEFAULT_API_URL = "http://localhost:10000"
DEFAULT_STATIC_FILES_PATH = "chat_web/build/web"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = "8080"
DEFAULT_API_PREFIX = "/api"
DEFAULT_PROXY_TIMEOUT = "30"

# Raw environment values echoed by the debug endpoint
DEBUG_ENV_KEYS = ("API_URL", "APP_ENV", "PORT")
