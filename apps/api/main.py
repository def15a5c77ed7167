"""uvicorn entrypoint: ``uvicorn apps.api.main:app`` from the repository root.

Building the app here keeps ``refyn.app`` importable without a configured
environment.
"""

from refyn.app import add_request_id_middleware, create_app

app = create_app()
add_request_id_middleware(app)
