"""Thin API launcher.

This is the uvicorn entrypoint. All application logic lives in the onechat package.
Run with: uvicorn main:app --reload

Note: The app instance is created here (not in onechat.app) to avoid import-time
side effects. Tests import create_app without needing every environment
variable configured.
"""

from onechat.app import add_request_id_middleware, create_app

# Create the application instance
app = create_app()
# Add request-id middleware LAST so it runs FIRST (outermost)
add_request_id_middleware(app)

__all__ = ["app"]
